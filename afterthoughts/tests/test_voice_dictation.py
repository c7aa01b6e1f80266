from __future__ import annotations

import asyncio
import json
import sys
import unittest
from pathlib import Path
from typing_extensions import override
from unittest.mock import patch

import httpx

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from afterthoughts.app.config import settings
from afterthoughts.app.exceptions import SpeechServiceError
from afterthoughts.app.services.soniox import PartialResult, SonioxStreamingSession, SpeechToken, get_temporary_api_key
from afterthoughts.app.services.voice_dictation import VoiceDictationAdapter, VoiceState
from afterthoughts.tests.fakes import FakeSpeechSession, FakeTimers


def _final(text: str) -> PartialResult:
    return PartialResult(tokens=[SpeechToken(text=text, is_final=True)])


def _interim(text: str) -> PartialResult:
    return PartialResult(tokens=[SpeechToken(text=text, is_final=False)])


class VoiceDictationTests(unittest.IsolatedAsyncioTestCase):
    timers: FakeTimers
    voice: VoiceDictationAdapter

    @override
    async def asyncSetUp(self):
        FakeSpeechSession.instances.clear()
        self.timers = FakeTimers()
        self.text = "Prefix"
        self.transcripts: list[str] = []
        self.key_error: Exception | None = None

        async def key_provider() -> str:
            if self.key_error is not None:
                raise self.key_error
            return "temp-key"

        def on_transcript(text: str) -> None:
            self.text = text
            self.transcripts.append(text)

        self.voice = VoiceDictationAdapter(
            get_text=lambda: self.text,
            on_transcript=on_transcript,
            key_provider=key_provider,
            session_factory=FakeSpeechSession,
            timers=self.timers,  # pyright: ignore[reportArgumentType]
            inactivity_timeout_seconds=30,
            debounce_seconds=1,
            error_clear_seconds=5,
        )

    @property
    def session(self) -> FakeSpeechSession:
        return FakeSpeechSession.instances[-1]

    async def _drain(self) -> None:
        for _ in range(3):
            await asyncio.sleep(0)

    async def test_final_tokens_append_after_prefix(self):
        self.assertTrue(await self.voice.start())
        self.assertIs(self.voice.state, VoiceState.RECORDING)
        self.assertEqual(self.session.api_key, "temp-key")
        assert self.session.started_with is not None
        self.assertEqual(self.session.started_with["model"], settings.soniox_model)

        self.session.on_partial_result(
            PartialResult(tokens=[SpeechToken("hello", True), SpeechToken(" wor", False)])
        )
        self.assertEqual(self.transcripts, ["Prefix hello"])

        self.session.on_partial_result(_interim(" wor"))
        self.assertEqual(len(self.transcripts), 1)

        self.session.on_partial_result(_final(" world"))
        self.assertEqual(self.transcripts[-1], "Prefix hello world")

    async def test_empty_prefix_has_no_leading_space(self):
        self.text = ""
        await self.voice.start()
        self.session.on_partial_result(_final("hi"))
        self.assertEqual(self.transcripts, ["hi"])

    async def test_inactivity_timeout_closes_after_30_seconds(self):
        await self.voice.start()

        self.timers.advance(29)
        self.assertTrue(self.voice.is_recording)

        # 任何 token（包括未确认的）都会重置静音计时
        self.session.on_partial_result(_interim("um"))
        self.timers.advance(29)
        self.assertTrue(self.voice.is_recording)

        self.timers.advance(1)
        self.assertFalse(self.voice.is_recording)
        await self._drain()
        self.assertTrue(self.session.stopped)
        self.assertIs(self.voice.state, VoiceState.IDLE)

    async def test_final_token_at_29_seconds_keeps_session_open(self):
        await self.voice.start()

        self.timers.advance(29)
        self.session.on_partial_result(_final("still here"))
        self.assertEqual(self.transcripts, ["Prefix still here"])

        self.timers.advance(2)
        self.assertTrue(self.voice.is_recording)
        self.assertEqual(self.voice.transcript, "still here")

        self.timers.advance(27)
        self.assertTrue(self.voice.is_recording)
        self.timers.advance(1)
        self.assertFalse(self.voice.is_recording)
        await self._drain()
        self.assertTrue(self.session.stopped)
        self.assertEqual(self.text, "Prefix still here")

    async def test_empty_results_do_not_reset_timer(self):
        await self.voice.start()
        self.timers.advance(20)
        self.session.on_partial_result(PartialResult(tokens=[]))
        self.timers.advance(10)
        self.assertFalse(self.voice.is_recording)

    async def test_start_and_stop_are_debounced(self):
        self.assertTrue(await self.voice.start())
        self.assertFalse(await self.voice.stop())
        self.assertTrue(self.voice.is_recording)

        self.timers.advance(0.5)
        self.assertFalse(await self.voice.start())
        self.assertEqual(len(FakeSpeechSession.instances), 1)

        self.timers.advance(0.5)
        self.assertTrue(await self.voice.stop())
        self.assertFalse(self.voice.is_recording)

        self.timers.advance(2)
        self.assertTrue(await self.voice.start())
        self.timers.advance(2)
        # 录音中再次 start 被拒绝
        self.assertFalse(await self.voice.start())
        self.assertEqual(len(FakeSpeechSession.instances), 2)

    async def test_error_is_shown_then_cleared_after_5_seconds(self):
        await self.voice.start()
        self.session.on_error(500, "boom")

        self.assertEqual(self.voice.error, "Recording error: boom")
        self.assertIs(self.voice.state, VoiceState.ERROR)
        self.assertFalse(self.voice.is_recording)

        self.timers.advance(4.9)
        self.assertEqual(self.voice.error, "Recording error: boom")
        self.timers.advance(0.1)
        self.assertEqual(self.voice.error, "")
        self.assertIs(self.voice.state, VoiceState.IDLE)

    async def test_key_failure_surfaces_error(self):
        self.key_error = SpeechServiceError("Soniox API key not configured")

        self.assertFalse(await self.voice.start())

        self.assertEqual(self.voice.error, "Soniox API key not configured")
        self.assertEqual(FakeSpeechSession.instances, [])
        self.assertFalse(self.voice.is_processing)

    async def test_callbacks_from_released_session_are_ignored(self):
        await self.voice.start()
        old = self.session
        self.timers.advance(1)
        await self.voice.stop()

        old.on_partial_result(_final("late"))
        old.on_error(500, "late error")
        old.on_started()

        self.assertEqual(self.transcripts, [])
        self.assertEqual(self.voice.error, "")
        self.assertFalse(self.voice.is_recording)

    async def test_finish_is_not_debounced(self):
        await self.voice.start()
        self.voice.finish()
        self.assertFalse(self.voice.is_recording)
        await self._drain()
        self.assertTrue(self.session.stopped)

    async def test_send_audio_only_while_recording(self):
        self.assertFalse(await self.voice.send_audio(b"early"))
        await self.voice.start()
        self.assertTrue(await self.voice.send_audio(b"chunk"))
        self.assertEqual(self.session.audio, [b"chunk"])

        self.voice.finish()
        self.assertFalse(await self.voice.send_audio(b"late"))

    async def test_teardown_cancels_session_and_timers(self):
        await self.voice.start()
        session = self.session

        await self.voice.teardown()

        self.assertTrue(session.cancelled)
        self.assertFalse(session.stopped)
        self.assertEqual(self.timers.pending, [])
        self.assertFalse(self.voice.is_recording)


class TemporaryKeyTests(unittest.IsolatedAsyncioTestCase):
    async def test_requests_temporary_key(self):
        seen: dict[str, object] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"api_key": "temp-123"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with patch.object(settings, "soniox_api_key", "static-key"):
                key = await get_temporary_api_key(http_client=client)

        self.assertEqual(key, "temp-123")
        self.assertTrue(str(seen["url"]).endswith("/v1/auth/temporary-api-key"))
        self.assertEqual(seen["auth"], "Bearer static-key")
        self.assertEqual(seen["body"], {"usage_type": "transcribe_websocket", "expires_in_seconds": 60})

    async def test_missing_key(self):
        with patch.object(settings, "soniox_api_key", None):
            with self.assertRaises(SpeechServiceError) as cm:
                await get_temporary_api_key()
        self.assertEqual(str(cm.exception), "Soniox API key not configured")

    async def test_error_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"message": "Invalid API key"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with patch.object(settings, "soniox_api_key", "static-key"):
                with self.assertRaises(SpeechServiceError) as cm:
                    await get_temporary_api_key(http_client=client)
        self.assertEqual(str(cm.exception), "Invalid API key")

    def test_partial_result_from_message(self):
        result = PartialResult.from_message(
            {"tokens": [{"text": "hi", "is_final": True}, {"text": "!", "is_final": False}], "finished": True}
        )
        self.assertEqual([t.text for t in result.tokens], ["hi", "!"])
        self.assertTrue(result.tokens[0].is_final)
        self.assertTrue(result.finished)


class _StalledConnection:
    """发完结束帧后服务端一直不回 finished"""

    def __init__(self):
        self.sent: list[str | bytes] = []
        self.closed = False

    async def send(self, message: str | bytes) -> None:
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True


class SonioxSessionTests(unittest.IsolatedAsyncioTestCase):
    async def test_stop_gives_up_when_server_never_finishes(self):
        session = SonioxStreamingSession(
            api_key="temp-key",
            on_started=lambda: None,
            on_partial_result=lambda _result: None,
            on_finished=lambda: None,
            on_error=lambda _status, _message: None,
            keepalive=False,
            finish_timeout=0.01,
        )
        ws = _StalledConnection()
        receiver = asyncio.create_task(asyncio.Event().wait())
        session._ws = ws  # pyright: ignore[reportAttributeAccessIssue]
        session._receiver = receiver

        await session.stop()
        self.assertEqual(ws.sent, [""])
        self.assertFalse(ws.closed)

        for _ in range(50):
            if ws.closed:
                break
            await asyncio.sleep(0.01)

        self.assertTrue(ws.closed)
        self.assertTrue(receiver.cancelled())


if __name__ == "__main__":
    unittest.main()
