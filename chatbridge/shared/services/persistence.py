"""Session persistence: one JSON file per assistant session.

Storage layout:
    ~/.chatbridge/sessions/{session_id}.json

Each file holds ``{session_id, history, current_path, created_at}``.
A chat that reopens a directory picks up the newest session recorded
for that path.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from chatbridge.engine.continuity import is_valid_session_id
from chatbridge.engine.errors import InvalidSessionId
from chatbridge.engine.models import ChatSession

logger = logging.getLogger(__name__)

DEFAULT_SESSIONS_DIR = Path.home() / ".chatbridge" / "sessions"


def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Write *content* to a temp file beside *path*, fsync, then rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
    )
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


class SessionStore:
    """Save, load and delete ChatSession records on disk."""

    def __init__(self, base_dir: Path | str | None = None) -> None:
        self._dir = Path(base_dir).expanduser() if base_dir else DEFAULT_SESSIONS_DIR

    @property
    def directory(self) -> Path:
        return self._dir

    def _path_for(self, session_id: str) -> Path:
        if not is_valid_session_id(session_id):
            raise InvalidSessionId(session_id)
        return self._dir / f"{session_id}.json"

    def save(self, session: ChatSession) -> Path | None:
        """Persist *session*. Sessions without an id have nothing to key on."""
        if not session.session_id:
            logger.debug("Not saving session without id (path=%s)", session.current_path)
            return None
        path = self._path_for(session.session_id)
        atomic_write_text(path, json.dumps(session.to_dict(), indent=2, ensure_ascii=False))
        logger.debug("Saved session %s to %s", session.session_id, path)
        return path

    def load(self, session_id: str) -> ChatSession | None:
        path = self._path_for(session_id)
        return self._read(path)

    def load_for_path(self, current_path: str) -> ChatSession | None:
        """Return the most recently written session for *current_path*."""
        if not self._dir.is_dir():
            return None
        stamped: list[tuple[float, Path]] = []
        for path in self._dir.glob("*.json"):
            try:
                stamped.append((path.stat().st_mtime, path))
            except FileNotFoundError:
                # Deleted as superseded between the listing and the stat.
                continue
        stamped.sort(key=lambda item: item[0], reverse=True)
        for _, path in stamped:
            session = self._read(path)
            if session is not None and session.current_path == current_path:
                return session
        return None

    def delete(self, session_id: str) -> bool:
        path = self._path_for(session_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.info("Deleted superseded session file %s", path)
        return True

    @staticmethod
    def _read(path: Path) -> ChatSession | None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Skipping unreadable session file %s: %s", path, exc)
            return None
        if not isinstance(data, dict):
            logger.warning("Skipping malformed session file %s", path)
            return None
        return ChatSession.from_dict(data)
