from pydantic import BaseModel


class VoiceStateResponse(BaseModel):
    """语音输入状态：idle / starting / recording / error"""
    state: str
    is_recording: bool
    is_processing: bool
    error: str = ""
    content: str = ""
