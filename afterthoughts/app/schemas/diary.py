from pydantic import BaseModel
from datetime import datetime


class DiaryResponse(BaseModel):
    """日记本响应模型"""
    id: int | str
    user_id: str | None = None
    title: str
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class DiaryListResponse(BaseModel):
    diaries: list[DiaryResponse]
    selected_id: int | str | None = None


class DiaryTitleRequest(BaseModel):
    title: str = ""


class DiaryDeleteResponse(BaseModel):
    deleted_entries: int
    redirect: str | None = None
