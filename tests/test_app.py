from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler

import pytest

from chatbridge import app


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_configure_logging_writes_rotating_file(tmp_path, restore_logging):
    log_file = app.configure_logging("debug", tmp_path / "logs")
    assert log_file == tmp_path / "logs" / "chatbridge.log"

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    rotating = [h for h in root.handlers if isinstance(h, RotatingFileHandler)]
    assert len(rotating) == 1
    assert rotating[0].maxBytes == 2_000_000
    assert logging.getLogger("aiohttp.access").level == logging.WARNING

    logging.getLogger("chatbridge.test").info("hello from test")
    rotating[0].flush()
    assert "hello from test" in log_file.read_text(encoding="utf-8")


def test_main_rejects_missing_project_dir(tmp_path, monkeypatch, restore_logging):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setattr(
        sys, "argv", ["chatbridge", str(tmp_path / "missing"), "--token", "t"]
    )
    with pytest.raises(SystemExit) as exc_info:
        app.main()
    assert exc_info.value.code == 2


def test_main_requires_token(tmp_path, monkeypatch, restore_logging):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("BRIDGE_TELEGRAM_TOKEN", raising=False)
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    monkeypatch.setattr(sys, "argv", ["chatbridge", str(tmp_path)])
    with pytest.raises(SystemExit):
        app.main()
