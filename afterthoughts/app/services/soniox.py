"""语音转写服务（Soniox）

两步：
1. 用静态服务密钥换一个短期（默认 60 秒）临时密钥：`POST /v1/auth/temporary-api-key`
2. 用临时密钥打开流式 websocket 会话：首帧发 JSON 配置，之后发二进制音频帧；
   空闲时发 `{"type": "keepalive"}` 防止连接超时；发送空帧表示音频结束。

服务端推送的每条消息都是一次 partial result：`tokens[{text, is_final}]`，
结束时带 `finished: true`，出错时带 `error_code` / `error_message`。
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from ..config import settings
from ..exceptions import SpeechServiceError
from ..utils.errors import safe_str
from .http_client import request_with_retry, retry_suffix
from .timers import spawn

logger = logging.getLogger(__name__)


@dataclass
class SpeechToken:
    text: str
    is_final: bool = False


@dataclass
class PartialResult:
    tokens: list[SpeechToken] = field(default_factory=list)
    finished: bool = False

    @classmethod
    def from_message(cls, data: dict[str, Any]) -> "PartialResult":
        tokens: list[SpeechToken] = []
        for item in data.get("tokens") or []:
            if not isinstance(item, dict):
                continue
            tokens.append(SpeechToken(text=str(item.get("text") or ""), is_final=bool(item.get("is_final"))))
        return cls(tokens=tokens, finished=bool(data.get("finished")))


async def get_temporary_api_key(*, http_client: httpx.AsyncClient | None = None) -> str:
    """用静态服务密钥换取短期临时密钥（usage_type=transcribe_websocket）"""
    api_key = (settings.soniox_api_key or "").strip()
    if not api_key:
        raise SpeechServiceError("Soniox API key not configured")

    url = f"{settings.soniox_api_base_url.rstrip('/')}/v1/auth/temporary-api-key"
    payload = {
        "usage_type": "transcribe_websocket",
        "expires_in_seconds": int(settings.soniox_temporary_key_ttl_seconds),
    }
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    client = http_client or httpx.AsyncClient(timeout=15)
    try:
        resp = await request_with_retry(
            client=client,
            method="POST",
            url=url,
            json=payload,
            headers=headers,
            max_attempts=2,
            backoff_seconds=0.5,
            retry_methods=frozenset({"POST"}),
        )
    except httpx.RequestError as e:
        raise SpeechServiceError(f"Network error: {safe_str(e)}{retry_suffix(e)}") from e
    finally:
        if http_client is None:
            await client.aclose()

    try:
        data: Any = resp.json()
    except Exception:
        data = None

    if resp.status_code >= 400:
        message = data.get("message") if isinstance(data, dict) else None
        raise SpeechServiceError(message or "Failed to get temporary API key")

    if not isinstance(data, dict) or not data.get("api_key"):
        raise SpeechServiceError("Failed to get temporary API key")
    return str(data["api_key"])


class SonioxStreamingSession:
    """一次流式转写会话；回调都在事件循环线程里同步触发"""

    def __init__(
        self,
        *,
        api_key: str,
        on_started: Callable[[], None],
        on_partial_result: Callable[[PartialResult], None],
        on_finished: Callable[[], None],
        on_error: Callable[[int | None, str], None],
        websocket_url: str | None = None,
        keepalive: bool = True,
        keepalive_interval: float | None = None,
        finish_timeout: float | None = None,
    ):
        self.api_key = api_key
        self.on_started = on_started
        self.on_partial_result = on_partial_result
        self.on_finished = on_finished
        self.on_error = on_error
        self.websocket_url = websocket_url or settings.soniox_websocket_url
        self.keepalive = keepalive
        self.keepalive_interval = float(keepalive_interval or settings.soniox_keepalive_interval_seconds)
        self.finish_timeout = float(finish_timeout or settings.soniox_finish_timeout_seconds)

        self._ws: ClientConnection | None = None
        self._receiver: asyncio.Task | None = None
        self._keepalive_task: asyncio.Task | None = None
        self._last_sent_at = 0.0
        self._closed = False

    async def start(
        self,
        *,
        model: str,
        language_hints: list[str],
        enable_language_identification: bool = True,
        audio_format: str = "auto",
    ) -> None:
        config = {
            "api_key": self.api_key,
            "model": model,
            "audio_format": audio_format,
            "language_hints": list(language_hints),
            "enable_language_identification": bool(enable_language_identification),
        }
        try:
            self._ws = await connect(self.websocket_url)
            await self._ws.send(json.dumps(config))
        except (OSError, WebSocketException) as e:
            raise SpeechServiceError(f"Failed to connect: {safe_str(e)}") from e

        self._last_sent_at = time.monotonic()
        self._receiver = spawn(self._receive_loop(), name="soniox-receive")
        if self.keepalive:
            self._keepalive_task = spawn(self._keepalive_loop(), name="soniox-keepalive")
        logger.info("[VOICE] Streaming session started: model=%s", model)
        self.on_started()

    async def send_audio(self, chunk: bytes) -> None:
        if self._ws is None or self._closed or not chunk:
            return
        await self._ws.send(chunk)
        self._last_sent_at = time.monotonic()

    async def _keepalive_loop(self) -> None:
        while not self._closed and self._ws is not None:
            await asyncio.sleep(self.keepalive_interval)
            if time.monotonic() - self._last_sent_at < self.keepalive_interval:
                continue
            try:
                await self._ws.send(json.dumps({"type": "keepalive"}))
            except ConnectionClosed:
                return
            self._last_sent_at = time.monotonic()

    async def _receive_loop(self) -> None:
        assert self._ws is not None
        try:
            async for message in self._ws:
                if isinstance(message, bytes):
                    continue
                try:
                    data: Any = json.loads(message)
                except ValueError:
                    logger.debug("[VOICE] Non-JSON message ignored")
                    continue
                if not isinstance(data, dict):
                    continue

                if data.get("error_code") is not None:
                    code = data.get("error_code")
                    self.on_error(int(code) if isinstance(code, int) else None, str(data.get("error_message") or "unknown error"))
                    return

                result = PartialResult.from_message(data)
                if result.tokens:
                    self.on_partial_result(result)
                if result.finished:
                    self.on_finished()
                    return
        except ConnectionClosedOK:
            return
        except ConnectionClosed as e:
            if not self._closed:
                self.on_error(e.rcvd.code if e.rcvd else None, safe_str(e.rcvd.reason if e.rcvd else e) or "connection closed")
        finally:
            await self._shutdown()

    async def stop(self) -> None:
        """优雅结束：发送空帧，等待服务端推送剩余结果并返回 finished；超过 finish_timeout 仍未结束则直接断开"""
        if self._ws is None or self._closed:
            return
        try:
            await self._ws.send("")
        except ConnectionClosed:
            await self._shutdown()
            return
        spawn(self._finish_deadline(), name="soniox-finish-deadline")

    async def _finish_deadline(self) -> None:
        await asyncio.sleep(self.finish_timeout)
        if self._closed:
            return
        logger.warning("[VOICE] No finished message after %ss, closing", self.finish_timeout)
        await self.cancel()

    async def cancel(self) -> None:
        """立即断开，不等待剩余结果"""
        if self._receiver is not None and not self._receiver.done():
            self._receiver.cancel()
        await self._shutdown()

    async def _shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._keepalive_task is not None and not self._keepalive_task.done():
            self._keepalive_task.cancel()
        if self._ws is not None:
            await self._ws.close()
        logger.info("[VOICE] Streaming session closed")
