"""Minimal Telegram Bot API client over aiohttp.

Implements the Outbound interface for the renderer plus the few calls
the polling loop needs. Every non-``ok`` response raises OutboundError.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import aiohttp

from chatbridge.engine.errors import OutboundError
from chatbridge.engine.outbound import Outbound

logger = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"
_DOWNLOAD_CHUNK = 64 * 1024


class TelegramClient(Outbound):
    def __init__(
        self,
        token: str,
        *,
        api_base: str = API_BASE,
        session: aiohttp.ClientSession | None = None,
        request_timeout: float = 30.0,
    ) -> None:
        if not token:
            raise ValueError("Telegram bot token is required")
        base = api_base.rstrip("/")
        self._url = f"{base}/bot{token}"
        self._file_url = f"{base}/file/bot{token}"
        self._session = session
        self._owns_session = session is None
        self._timeout = request_timeout

    async def __aenter__(self) -> TelegramClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, connect=10)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def call(
        self,
        method: str,
        payload: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """POST one Bot API method and return its ``result``."""
        session = self._get_session()
        client_timeout = aiohttp.ClientTimeout(total=timeout or self._timeout)
        try:
            async with session.post(
                f"{self._url}/{method}", json=payload or {}, timeout=client_timeout
            ) as resp:
                try:
                    body = await resp.json(content_type=None)
                except ValueError as exc:
                    raise OutboundError(
                        method, f"non-JSON response ({resp.status})", resp.status
                    ) from exc
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise OutboundError(method, str(exc) or type(exc).__name__) from exc

        if not isinstance(body, dict) or not body.get("ok"):
            description = (
                body.get("description", "unknown error")
                if isinstance(body, dict)
                else "malformed response"
            )
            raise OutboundError(method, description, status)
        return body.get("result")

    # ── Outbound ──

    async def send_message(
        self, chat_id: int, text: str, *, html: bool = False
    ) -> int:
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if html:
            payload["parse_mode"] = "HTML"
        result = await self.call("sendMessage", payload)
        try:
            return int(result["message_id"])
        except (TypeError, KeyError, ValueError) as exc:
            raise OutboundError("sendMessage", "response lacks message_id") from exc

    async def edit_message(
        self, chat_id: int, message_id: int, text: str, *, html: bool = False
    ) -> None:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
        }
        if html:
            payload["parse_mode"] = "HTML"
        try:
            await self.call("editMessageText", payload)
        except OutboundError as exc:
            # Editing to identical content is reported as an error; treat as done.
            if "message is not modified" in exc.reason:
                return
            raise

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        await self.call(
            "deleteMessage", {"chat_id": chat_id, "message_id": message_id}
        )

    async def send_typing(self, chat_id: int) -> None:
        await self.call("sendChatAction", {"chat_id": chat_id, "action": "typing"})

    # ── Polling ──

    async def get_updates(
        self, offset: int | None, poll_timeout: int = 30
    ) -> list[dict[str, Any]]:
        payload: dict[str, Any] = {
            "timeout": poll_timeout,
            "allowed_updates": ["message"],
        }
        if offset is not None:
            payload["offset"] = offset
        result = await self.call(
            "getUpdates", payload, timeout=poll_timeout + self._timeout
        )
        return result if isinstance(result, list) else []

    async def get_me(self) -> dict[str, Any]:
        result = await self.call("getMe")
        return result if isinstance(result, dict) else {}

    async def set_my_commands(self, commands: list[tuple[str, str]]) -> None:
        await self.call(
            "setMyCommands",
            {
                "commands": [
                    {"command": name, "description": description}
                    for name, description in commands
                ]
            },
        )

    # ── Files ──

    async def get_file_path(self, file_id: str) -> str:
        """Resolve *file_id* to the path used by the file download endpoint."""
        result = await self.call("getFile", {"file_id": file_id})
        file_path = result.get("file_path") if isinstance(result, dict) else None
        if not file_path:
            raise OutboundError("getFile", "response lacks file_path")
        return str(file_path)

    async def download_file(
        self, file_path: str, dest: Path, *, max_bytes: int | None = None
    ) -> int:
        """Stream a file into *dest* and return its size in bytes.

        The body lands in a sibling ``.part`` file first, so *dest* is only
        replaced by a complete download no larger than *max_bytes*.
        """
        session = self._get_session()
        partial = dest.with_name(f".{dest.name}.part")
        size = 0
        try:
            async with session.get(
                f"{self._file_url}/{file_path}",
                timeout=aiohttp.ClientTimeout(total=self._timeout * 4),
            ) as resp:
                if resp.status != 200:
                    raise OutboundError("download", f"HTTP {resp.status}", resp.status)
                with open(partial, "wb") as f:
                    async for chunk in resp.content.iter_chunked(_DOWNLOAD_CHUNK):
                        size += len(chunk)
                        if max_bytes is not None and size > max_bytes:
                            raise OutboundError(
                                "download", f"file exceeds {max_bytes} bytes"
                            )
                        f.write(chunk)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            partial.unlink(missing_ok=True)
            raise OutboundError("download", str(exc) or type(exc).__name__) from exc
        except OutboundError:
            partial.unlink(missing_ok=True)
            raise
        partial.replace(dest)
        logger.debug("Downloaded %s to %s (%d bytes)", file_path, dest, size)
        return size
