from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

RowId = int | str


class Diary(BaseModel):
    """日记本 - 对应托管数据库的 diaries 表（行级权限：仅 owner 可读写）"""

    id: RowId
    user_id: str
    title: str
    created_at: datetime | None = None
