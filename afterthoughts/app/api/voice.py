"""Voice API：开始 / 停止录音，转发麦克风音频分片"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ..schemas import VoiceStateResponse
from ..services.client_state import ClientState
from .deps import get_client_state

router = APIRouter(prefix="/voice", tags=["voice"])


def _voice_state(state: ClientState) -> VoiceStateResponse:
    voice = state.require_voice()
    return VoiceStateResponse(
        state=str(voice.state),
        is_recording=voice.is_recording,
        is_processing=voice.is_processing,
        error=voice.error,
        content=state.require_editor().current_content(),
    )


@router.get("", response_model=VoiceStateResponse)
async def get_voice(state: ClientState = Depends(get_client_state)):
    return _voice_state(state)


@router.post("/start", response_model=VoiceStateResponse)
async def start_recording(state: ClientState = Depends(get_client_state)):
    await state.require_voice().start()
    return _voice_state(state)


@router.post("/stop", response_model=VoiceStateResponse)
async def stop_recording(state: ClientState = Depends(get_client_state)):
    await state.require_voice().stop()
    return _voice_state(state)


@router.post("/audio", response_model=VoiceStateResponse)
async def send_audio(request: Request, state: ClientState = Depends(get_client_state)):
    """请求体为原始音频字节（浏览器 MediaRecorder 分片）"""
    chunk = await request.body()
    if chunk:
        await state.require_voice().send_audio(chunk)
    return _voice_state(state)
