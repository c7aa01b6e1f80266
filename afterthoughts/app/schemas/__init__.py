from .auth import (
    AccountResponse,
    ActivityRequest,
    ActivityResponse,
    LoginRequest,
    PasswordCheckRequest,
    PasswordCheckResponse,
    PasswordRuleResult,
    SessionResponse,
    SignupRequest,
    SignupResponse,
)
from .diary import DiaryDeleteResponse, DiaryListResponse, DiaryResponse, DiaryTitleRequest
from .entry import (
    ConfirmRequest,
    EditorStateResponse,
    EntryPreviewResponse,
    EntryResponse,
    FieldUpdateRequest,
    FormFieldsResponse,
)
from .preferences import ThemeResponse, ThemeUpdateRequest
from .voice import VoiceStateResponse

__all__ = [
    "AccountResponse",
    "ActivityRequest",
    "ActivityResponse",
    "LoginRequest",
    "PasswordCheckRequest",
    "PasswordCheckResponse",
    "PasswordRuleResult",
    "SessionResponse",
    "SignupRequest",
    "SignupResponse",
    "DiaryResponse",
    "DiaryListResponse",
    "DiaryTitleRequest",
    "DiaryDeleteResponse",
    "EntryResponse",
    "EntryPreviewResponse",
    "FormFieldsResponse",
    "EditorStateResponse",
    "FieldUpdateRequest",
    "ConfirmRequest",
    "ThemeResponse",
    "ThemeUpdateRequest",
    "VoiceStateResponse",
]
