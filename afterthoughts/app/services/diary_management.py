"""日记本管理：改名、删除（先逐条删条目，再删日记本）

删除没有事务：任一条目删除失败就中止并上抛，日记本本身保持不动。
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from ..exceptions import BackendError, ConfirmationRequired, FormValidationError, OperationInFlight
from ..models import Diary
from ..utils.text import is_blank
from .diary_directory import DIARIES_TABLE
from .entry_editor import ENTRIES_TABLE

if TYPE_CHECKING:
    from .supabase import SupabaseClient

logger = logging.getLogger(__name__)

DELETE_DIARY_PROMPT = "Delete this diary and all its entries?"

ParentCallback = Callable[[], Awaitable[None]]


class DiaryManager:
    def __init__(
        self,
        client: "SupabaseClient",
        diary: Diary,
        *,
        on_updated: ParentCallback | None = None,
        on_deleted: ParentCallback | None = None,
    ):
        self.client = client
        self.diary = diary
        self.on_updated = on_updated
        self.on_deleted = on_deleted
        self.saving = False

    async def rename(self, title: str) -> Diary:
        if is_blank(title):
            raise FormValidationError("Diary name cannot be empty")
        if self.saving:
            raise OperationInFlight("Diary is being saved")

        self.saving = True
        try:
            await self.client.update(
                DIARIES_TABLE,
                {"title": title.strip()},
                match={"id": self.diary.id},
            )
        finally:
            self.saving = False

        self.diary = self.diary.model_copy(update={"title": title.strip()})
        logger.info("[DIARY] Diary renamed: diary=%s", self.diary.id)
        if self.on_updated is not None:
            await self.on_updated()
        return self.diary

    async def delete(self, *, confirmed: bool = False) -> int:
        """返回删除的条目数"""
        if not confirmed:
            raise ConfirmationRequired(DELETE_DIARY_PROMPT)
        if self.saving:
            raise OperationInFlight("Diary is being saved")

        self.saving = True
        try:
            rows = await self.client.select(
                ENTRIES_TABLE,
                filters={"diary_id": self.diary.id},
                columns="id",
            )
            deleted = 0
            for row in rows:
                try:
                    await self.client.delete(ENTRIES_TABLE, match={"id": row["id"]})
                except BackendError as e:
                    logger.warning(
                        "[DIARY] Entry deletion failed, diary kept: diary=%s entry=%s error=%s",
                        self.diary.id,
                        row["id"],
                        e.message,
                    )
                    raise BackendError(
                        f"Failed to delete entries: {e.message}",
                        status_code=e.status_code,
                        code=e.code,
                    ) from e
                deleted += 1

            await self.client.delete(DIARIES_TABLE, match={"id": self.diary.id})
        finally:
            self.saving = False

        logger.info("[DIARY] Diary deleted: diary=%s entries=%s", self.diary.id, deleted)
        if self.on_deleted is not None:
            await self.on_deleted()
        return deleted
