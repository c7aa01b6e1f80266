"""日记本目录：列出当前账号的日记本、新建、选中"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..exceptions import BackendError, FormValidationError, OperationInFlight
from ..models import Diary, RowId
from ..utils.text import is_blank

if TYPE_CHECKING:
    from .supabase import SupabaseClient

logger = logging.getLogger(__name__)

DIARIES_TABLE = "diaries"


class DiaryDirectory:
    def __init__(self, client: "SupabaseClient", user_id: str):
        self.client = client
        self.user_id = user_id
        self.diaries: list[Diary] = []
        self.selected: Diary | None = None
        self.loading = False
        self.creating = False

    async def load(self) -> list[Diary]:
        """按创建时间倒序拉取（每个会话一次，变更后再拉）"""
        self.loading = True
        try:
            rows = await self.client.select(
                DIARIES_TABLE,
                filters={"user_id": self.user_id},
                order="created_at",
                ascending=False,
            )
        finally:
            self.loading = False
        self.diaries = [Diary.model_validate(row) for row in rows]

        # 选中的日记本被删除/改名后保持引用最新
        if self.selected is not None:
            self.selected = next((d for d in self.diaries if str(d.id) == str(self.selected.id)), None)
        return self.diaries

    async def create(self, title: str) -> Diary:
        if is_blank(title):
            raise FormValidationError("Diary name cannot be empty")
        if self.creating:
            raise OperationInFlight("Diary is being created")

        self.creating = True
        try:
            rows = await self.client.insert(
                DIARIES_TABLE,
                [{"user_id": self.user_id, "title": title.strip()}],
            )
        finally:
            self.creating = False
        if not rows:
            raise BackendError("Diary was not created")

        diary = Diary.model_validate(rows[0])
        self.diaries = [diary, *self.diaries]
        logger.info("[DIARY] Diary created: user=%s diary=%s", self.user_id, diary.id)
        return diary

    def get(self, diary_id: RowId) -> Diary:
        for diary in self.diaries:
            if str(diary.id) == str(diary_id):
                return diary
        raise LookupError(f"Diary not found: {diary_id}")

    def select(self, diary_id: RowId) -> Diary:
        self.selected = self.get(diary_id)
        return self.selected

    def clear_selection(self) -> None:
        self.selected = None
