"""语音输入适配器

状态机：idle → starting → recording → idle，另有短暂的 error（提示 5 秒后自动清除）。

约束：
- start/stop 共用 1 秒防抖；starting / recording / 已有会话时拒绝重入。
- 开始录音时记下编辑框当前内容作为前缀；只累积 is_final 的 token，
  每次都把“前缀 + 已确认转写”整体回写给编辑器。
- 收到任意 token 都会重置 30 秒静音计时；超时自动断开。
- 断开（stop / 静音超时 / 出错）：取消计时器 → 请求会话 stop → 释放句柄。
  释放后的会话即使还有回调到达，也会因 generation 不匹配被忽略。
- 宿主卸载时 cancel（不是 stop）会话并清除所有计时器，避免泄漏活连接。
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from functools import partial
from typing import Any, Protocol

from ..config import settings
from ..utils.errors import exception_summary
from .soniox import PartialResult, SonioxStreamingSession, get_temporary_api_key
from .timers import TimerHandle, Timers, cancel_timer, spawn

logger = logging.getLogger(__name__)


class SpeechSession(Protocol):
    async def start(
        self,
        *,
        model: str,
        language_hints: list[str],
        enable_language_identification: bool = True,
    ) -> None: ...

    async def send_audio(self, chunk: bytes) -> None: ...

    async def stop(self) -> None: ...

    async def cancel(self) -> None: ...


SessionFactory = Callable[..., SpeechSession]


class VoiceState(StrEnum):
    IDLE = "idle"
    STARTING = "starting"
    RECORDING = "recording"
    ERROR = "error"


class VoiceDictationAdapter:
    def __init__(
        self,
        *,
        get_text: Callable[[], str],
        on_transcript: Callable[[str], None],
        key_provider: Callable[[], Awaitable[str]] | None = None,
        session_factory: SessionFactory | None = None,
        timers: Timers | None = None,
        inactivity_timeout_seconds: float | None = None,
        debounce_seconds: float | None = None,
        error_clear_seconds: float | None = None,
    ):
        self.get_text = get_text
        self.on_transcript = on_transcript
        self.key_provider = key_provider or get_temporary_api_key
        self.session_factory: SessionFactory = session_factory or SonioxStreamingSession
        self.timers = timers or Timers()
        self.inactivity_timeout_seconds = float(
            inactivity_timeout_seconds or settings.voice_inactivity_timeout_seconds
        )
        self.debounce_seconds = float(
            settings.voice_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self.error_clear_seconds = float(error_clear_seconds or settings.voice_error_clear_seconds)

        self.is_recording = False
        self.is_processing = False
        self.error = ""

        self._session: SpeechSession | None = None
        self._starting = False
        self._last_action_at: float | None = None
        self._prefix = ""
        self._buffer = ""
        self._generation = 0
        self._inactivity_timer: TimerHandle | None = None
        self._error_timer: TimerHandle | None = None

    @property
    def state(self) -> VoiceState:
        if self.is_recording:
            return VoiceState.RECORDING
        if self._starting or self.is_processing:
            return VoiceState.STARTING
        if self.error:
            return VoiceState.ERROR
        return VoiceState.IDLE

    @property
    def transcript(self) -> str:
        return self._buffer

    def _debounced(self) -> bool:
        now = self.timers.monotonic()
        last = self._last_action_at
        if last is not None and now - last < self.debounce_seconds:
            return True
        self._last_action_at = now
        return False

    # ── 计时器 ─────────────────────────────────────────────────────

    def _reset_inactivity_timer(self) -> None:
        cancel_timer(self._inactivity_timer)
        self._inactivity_timer = self.timers.call_later(
            self.inactivity_timeout_seconds,
            self._on_inactivity,
        )

    def _on_inactivity(self) -> None:
        self._inactivity_timer = None
        logger.info(
            "[VOICE] %s seconds without new tokens, auto-closing",
            int(self.inactivity_timeout_seconds),
        )
        self._end_recording()

    def _show_error(self, message: str) -> None:
        self.error = message
        cancel_timer(self._error_timer)
        self._error_timer = self.timers.call_later(self.error_clear_seconds, self._clear_error)

    def _clear_error(self) -> None:
        self._error_timer = None
        self.error = ""

    # ── 连接 ───────────────────────────────────────────────────────

    def close_connection(self) -> None:
        """取消静音计时 → 请求会话 stop → 释放句柄"""
        cancel_timer(self._inactivity_timer)
        self._inactivity_timer = None
        self._generation += 1

        session = self._session
        self._session = None
        if session is None:
            return
        logger.info("[VOICE] Stopping streaming session")
        try:
            spawn(session.stop(), name="voice-stop")
        except Exception:
            logger.exception("[VOICE] Error closing connection")

    def _end_recording(self) -> None:
        self.close_connection()
        self.is_recording = False
        self.is_processing = False
        self._starting = False

    async def start(self) -> bool:
        """开始录音；被防抖或重入拦截时返回 False"""
        if self._debounced():
            return False
        if self._starting or self.is_recording or self._session is not None:
            return False

        self._starting = True
        self.error = ""
        cancel_timer(self._error_timer)
        self._error_timer = None
        self.is_processing = True
        self._buffer = ""
        self._prefix = self.get_text() or ""
        self._generation += 1
        generation = self._generation

        try:
            api_key = await self.key_provider()
            if generation != self._generation:
                # 获取密钥期间已被 stop / 卸载
                return False

            session = self.session_factory(
                api_key=api_key,
                on_started=partial(self._on_started, generation),
                on_partial_result=partial(self._on_partial_result, generation),
                on_finished=partial(self._on_finished, generation),
                on_error=partial(self._on_error, generation),
            )
            self._session = session
            await session.start(
                model=settings.soniox_model,
                language_hints=settings.language_hints,
                enable_language_identification=settings.soniox_enable_language_identification,
            )
        except Exception as e:
            logger.warning("[VOICE] Failed to start: %s", exception_summary(e))
            self._end_recording()
            self._show_error(str(e) or "Failed to start recording")
            return False
        return True

    async def stop(self) -> bool:
        """用户点击停止；与 start 共用防抖"""
        if self._debounced():
            return False
        logger.info("[VOICE] Stop requested")
        self._end_recording()
        return True

    def finish(self) -> None:
        """编辑器保存/丢弃时收尾：不防抖，直接断开"""
        if self._session is not None or self.is_recording or self._starting:
            self._end_recording()

    async def send_audio(self, chunk: bytes) -> bool:
        session = self._session
        if session is None or not self.is_recording:
            return False
        await session.send_audio(chunk)
        return True

    async def teardown(self) -> None:
        """宿主卸载：cancel 会话并清除所有计时器"""
        cancel_timer(self._inactivity_timer)
        cancel_timer(self._error_timer)
        self._inactivity_timer = None
        self._error_timer = None
        self._generation += 1

        session = self._session
        self._session = None
        if session is not None:
            try:
                await session.cancel()
            except Exception:
                logger.exception("[VOICE] Unmount error")

        self.is_recording = False
        self.is_processing = False
        self._starting = False
        self.error = ""
        self._buffer = ""

    # ── 会话回调 ───────────────────────────────────────────────────

    def _on_started(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._starting = False
        self.is_processing = False
        self.is_recording = True
        self._reset_inactivity_timer()

    def _on_partial_result(self, generation: int, result: PartialResult) -> None:
        if generation != self._generation or not result.tokens:
            return
        self._reset_inactivity_timer()

        finals = "".join(token.text for token in result.tokens if token.is_final)
        if not finals:
            return
        self._buffer += finals
        space = " " if self._prefix else ""
        self.on_transcript(f"{self._prefix}{space}{self._buffer}")

    def _on_finished(self, generation: int) -> None:
        if generation != self._generation:
            return
        logger.info("[VOICE] Session finished")
        self._end_recording()
        self._buffer = ""

    def _on_error(self, generation: int, status: Any, message: str) -> None:
        if generation != self._generation:
            return
        logger.warning("[VOICE] Recording error: status=%s message=%s", status, message)
        self._end_recording()
        self._show_error(f"Recording error: {message}")
