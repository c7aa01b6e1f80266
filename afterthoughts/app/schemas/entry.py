from pydantic import BaseModel, Field
from datetime import datetime


class EntryResponse(BaseModel):
    """条目响应模型"""
    id: int | str
    diary_id: int | str
    title: str | None = None
    content: str = ""
    is_draft: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class EntryPreviewResponse(BaseModel):
    id: int | str
    title: str | None = None
    preview: str
    is_draft: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class FormFieldsResponse(BaseModel):
    title: str = ""
    content: str = ""


class EditorStateResponse(BaseModel):
    """编辑器当前状态（列表 + 打开的表单 + 保存指示）"""

    diary_id: int | str
    diary_title: str
    mode: str
    status: str
    entries: list[EntryPreviewResponse] = Field(default_factory=list)
    composer: FormFieldsResponse
    edit_form: FormFieldsResponse
    editing_entry_id: int | str | None = None
    draft_id: int | str | None = None
    has_unsaved_changes: bool = False
    saving: bool = False
    last_saved_at: datetime | None = None
    last_error: str | None = None


class FieldUpdateRequest(BaseModel):
    """按键：只传变化的字段"""
    title: str | None = None
    content: str | None = None


class ConfirmRequest(BaseModel):
    confirmed: bool = False
