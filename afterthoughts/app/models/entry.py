from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from .diary import RowId


class Entry(BaseModel):
    """日记条目 - 对应 entries 表

    is_draft=True 表示自动保存产生、尚未发布的草稿；发布时清除且不会再被标回草稿。
    """

    id: RowId
    diary_id: RowId
    title: str | None = None
    content: str = ""
    is_draft: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class EntryPreview(BaseModel):
    """列表项：内容只保留预览（两行 / 150 字符），草稿单独标记"""

    id: RowId
    title: str | None = None
    preview: str = ""
    is_draft: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
