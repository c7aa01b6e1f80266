"""日记条目编辑器（自动保存状态机）

状态：
- none：只显示列表（挂载时会把最近一次更新的草稿回填到 composer，但不自动打开）
- new：新建 composer 打开；首次自动保存创建草稿（is_draft=True），之后都更新同一条
- edit：编辑弹窗打开；自动保存直接更新该条目，不经过草稿、不改 is_draft
- closed：已卸载（切换日记本 / 返回列表 / 登出），所有定时器与语音连接都已取消

关键约束：
- 定时器回调只读 FormFields（每次输入同步更新的“最新值单元格”），
  从不读注册定时器时拍下的快照，所以保存的一定是最后一次按键后的内容。
- 每个 diary 至多一条草稿：首次落草稿前先查后端是否已有草稿，有则复用。
- 草稿只在发布时清一次 is_draft，之后任何保存都不会把它标回草稿。
- 保存返回时如果表单已关闭或重新打开过，只保留落库结果，不改新表单的未保存标记。
- 会丢弃未保存内容的操作（关闭 composer / 关闭弹窗 / 返回列表）在未确认时抛
  ConfirmationRequired；用户拒绝即不再带 confirmed=True 重发。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from ..config import settings
from ..exceptions import (
    AfterthoughtsError,
    BackendError,
    ConfirmationRequired,
    FormValidationError,
    OperationInFlight,
)
from ..models import Diary, Entry, EntryPreview, RowId
from ..scheduler import AutosaveScheduler, scheduler as default_scheduler
from ..utils.text import entry_preview, is_blank

if TYPE_CHECKING:
    from .supabase import SupabaseClient
    from .voice_dictation import VoiceDictationAdapter

logger = logging.getLogger(__name__)

ENTRIES_TABLE = "entries"
UNSAVED_CHANGES_PROMPT = "You have unsaved changes. Discard them?"
DELETE_ENTRY_PROMPT = "Are you sure you want to delete this entry?"
REQUIRED_FIELDS_MESSAGE = "Title and content are required"


class EditorMode(StrEnum):
    NONE = "none"
    NEW = "new"
    EDIT = "edit"
    CLOSED = "closed"


@dataclass
class FormFields:
    """最新值单元格：输入事件同步写入，定时器回调读取"""

    title: str = ""
    content: str = ""

    def snapshot(self) -> tuple[str, str]:
        return self.title, self.content

    def copy(self) -> "FormFields":
        return FormFields(self.title, self.content)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _same_id(a: RowId | None, b: RowId | None) -> bool:
    return a is not None and b is not None and str(a) == str(b)


def _aware(value: datetime | None) -> datetime:
    if value is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _sort_key(entry: Entry) -> datetime:
    return _aware(entry.created_at)


class EntryEditor:
    """单个日记本的条目列表 + 新建/编辑表单"""

    def __init__(
        self,
        client: "SupabaseClient",
        diary: Diary,
        *,
        scheduler: AutosaveScheduler | None = None,
        job_id: str | None = None,
        autosave_interval_seconds: float | None = None,
        voice: "VoiceDictationAdapter | None" = None,
    ):
        self.client = client
        self.diary = diary
        self.scheduler = scheduler or default_scheduler
        self.job_id = job_id or f"autosave:{diary.id}"
        self.autosave_interval_seconds = float(
            autosave_interval_seconds or settings.autosave_interval_seconds
        )
        self.voice = voice

        self.entries: list[Entry] = []
        self.mode = EditorMode.NONE
        self.composer = FormFields()
        self.edit_form = FormFields()
        self.editing_entry: Entry | None = None
        self.draft_id: RowId | None = None
        self.has_unsaved_changes = False
        self.saving = False
        self.loading = False
        self.last_saved_at: datetime | None = None
        self.last_error: str | None = None
        # composer 最近一次成功落库的内容；丢弃未保存修改时回退到这里
        self._persisted = FormFields()
        # 表单每次打开/关闭都 +1；保存完成时据此判断是否还是发起保存的那一次表单
        self._form_generation = 0

    # ── 状态 ───────────────────────────────────────────────────────

    @property
    def status(self) -> str:
        if self.mode is EditorMode.CLOSED:
            return "closed"
        if self.mode is EditorMode.NONE:
            return "idle"
        if self.saving:
            return "autosaving"
        if self.has_unsaved_changes:
            return "dirty"
        if self.last_saved_at is not None:
            return "saved"
        return "composing"

    def _active_form(self) -> FormFields | None:
        if self.mode is EditorMode.NEW:
            return self.composer
        if self.mode is EditorMode.EDIT:
            return self.edit_form
        return None

    def _ensure_open(self) -> None:
        if self.mode is EditorMode.CLOSED:
            raise AfterthoughtsError("Editor is closed")

    def _guard_discard(self, confirmed: bool) -> None:
        if self.has_unsaved_changes and not confirmed:
            raise ConfirmationRequired(UNSAVED_CHANGES_PROMPT)

    def _find_entry(self, entry_id: RowId) -> Entry:
        for entry in self.entries:
            if _same_id(entry.id, entry_id):
                return entry
        raise LookupError(f"Entry not found: {entry_id}")

    # ── 列表 ───────────────────────────────────────────────────────

    async def refresh(self) -> list[Entry]:
        rows = await self.client.select(
            ENTRIES_TABLE,
            filters={"diary_id": self.diary.id},
            order="created_at",
            ascending=False,
        )
        self.entries = [Entry.model_validate(row) for row in rows]
        return self.entries

    async def _refresh_quietly(self) -> None:
        try:
            await self.refresh()
        except BackendError as e:
            self.last_error = e.message
            logger.warning("[EDITOR] Entry list refresh failed: diary=%s error=%s", self.diary.id, e.message)

    async def load(self) -> list[Entry]:
        """挂载：拉取条目，并把最近一次更新的草稿回填到 composer（不自动打开）"""
        self._ensure_open()
        self.loading = True
        try:
            await self.refresh()
        finally:
            self.loading = False

        drafts = [e for e in self.entries if e.is_draft]
        if drafts and self.mode is EditorMode.NONE:
            latest = max(drafts, key=lambda e: _aware(e.updated_at or e.created_at))
            self.composer = FormFields(latest.title or "", latest.content or "")
            self._persisted = self.composer.copy()
            self.draft_id = latest.id
            logger.info("[EDITOR] Draft restored: diary=%s entry=%s", self.diary.id, latest.id)
        return self.entries

    def previews(self) -> list[EntryPreview]:
        ordered = sorted(self.entries, key=_sort_key, reverse=True)
        return [
            EntryPreview(
                id=e.id,
                title=e.title,
                preview=entry_preview(e.content),
                is_draft=e.is_draft,
                created_at=e.created_at,
                updated_at=e.updated_at,
            )
            for e in ordered
        ]

    # ── 输入 ───────────────────────────────────────────────────────

    def set_title(self, value: str) -> None:
        form = self._active_form() or self.composer
        form.title = value or ""
        if self._active_form() is not None:
            self.has_unsaved_changes = True

    def set_content(self, value: str) -> None:
        form = self._active_form() or self.composer
        form.content = value or ""
        if self._active_form() is not None:
            self.has_unsaved_changes = True

    def current_content(self) -> str:
        return (self._active_form() or self.composer).content

    def apply_transcript(self, text: str) -> None:
        """语音输入的实时回写（前缀 + 已确认的转写）"""
        self.set_content(text)

    # ── 自动保存 ───────────────────────────────────────────────────

    def _start_autosave(self) -> None:
        self.scheduler.add_interval_job(
            self.job_id,
            self.autosave,
            seconds=self.autosave_interval_seconds,
        )

    def _stop_autosave(self) -> None:
        self.scheduler.remove_job(self.job_id)

    async def _find_latest_draft(self) -> Entry | None:
        rows = await self.client.select(
            ENTRIES_TABLE,
            filters={"diary_id": self.diary.id, "is_draft": True},
            order="updated_at",
            ascending=False,
            limit=1,
        )
        return Entry.model_validate(rows[0]) if rows else None

    async def _persist_draft(self, title: str, content: str) -> None:
        if self.draft_id is not None:
            rows = await self.client.update(
                ENTRIES_TABLE,
                {"title": title, "content": content, "updated_at": _now_iso()},
                match={"id": self.draft_id, "is_draft": True},
            )
            if rows:
                return
            # 草稿已被发布或删除（例如另一台设备），重新建一条
            logger.info("[EDITOR] Draft vanished, creating a new one: entry=%s", self.draft_id)
            self.draft_id = None

        existing = await self._find_latest_draft()
        if existing is not None:
            self.draft_id = existing.id
            await self.client.update(
                ENTRIES_TABLE,
                {"title": title, "content": content, "updated_at": _now_iso()},
                match={"id": existing.id},
            )
            return

        rows = await self.client.insert(
            ENTRIES_TABLE,
            [{"diary_id": self.diary.id, "title": title, "content": content, "is_draft": True}],
        )
        if not rows:
            raise BackendError("Draft was not saved")
        self.draft_id = Entry.model_validate(rows[0]).id
        logger.info("[EDITOR] Draft created: diary=%s entry=%s", self.diary.id, self.draft_id)

    async def autosave(self) -> bool:
        """周期任务回调；返回是否真的写了后端。

        跳过（不报错）的情况：没有打开的表单、没有未保存修改、正在保存、标题或内容为空。
        """
        mode = self.mode
        generation = self._form_generation
        form = self._active_form()
        if form is None or not self.has_unsaved_changes or self.saving:
            return False

        title, content = form.snapshot()
        if is_blank(title) or is_blank(content):
            return False

        self.saving = True
        try:
            if mode is EditorMode.NEW:
                await self._persist_draft(title, content)
                self._persisted = FormFields(title, content)
            else:
                if self.editing_entry is None:
                    raise AfterthoughtsError("No entry is being edited")
                await self.client.update(
                    ENTRIES_TABLE,
                    {"title": title, "content": content, "updated_at": _now_iso()},
                    match={"id": self.editing_entry.id},
                )
        except BackendError as e:
            self.last_error = e.message
            logger.warning("[EDITOR] Autosave failed: diary=%s error=%s", self.diary.id, e.message)
            return False
        finally:
            self.saving = False

        # 保存期间表单已关闭/切换/重新打开：只保留落库结果，不动新表单的 dirty 标记；
        # composer 已关闭时与已落库的草稿对齐
        if self._form_generation != generation:
            if mode is EditorMode.NEW and self.mode is EditorMode.NONE:
                self.composer = self._persisted.copy()
            return True

        # 保存期间又有新输入时保持 dirty，下一次 tick 继续保存
        if form.snapshot() == (title, content):
            self.has_unsaved_changes = False
        self.last_saved_at = datetime.now(timezone.utc)
        self.last_error = None
        logger.debug("[EDITOR] Autosaved: diary=%s mode=%s", self.diary.id, mode)
        await self._refresh_quietly()
        return True

    # ── 新建 / 发布 ─────────────────────────────────────────────────

    def open_composer(self, *, confirmed: bool = False) -> None:
        self._ensure_open()
        if self.mode is EditorMode.NEW:
            return
        if self.mode is EditorMode.EDIT:
            self.close_edit(confirmed=confirmed)
        self.mode = EditorMode.NEW
        self._form_generation += 1
        self.has_unsaved_changes = False
        self.last_saved_at = None
        self._start_autosave()

    def close_composer(self, *, confirmed: bool = False) -> None:
        if self.mode is not EditorMode.NEW:
            return
        self._guard_discard(confirmed)
        self._stop_autosave()
        self._release_voice()
        self.mode = EditorMode.NONE
        self.composer = self._persisted.copy()
        self._form_generation += 1
        self.has_unsaved_changes = False

    async def publish(self) -> Entry:
        """提交表单：有草稿则更新并清除 is_draft，否则直接插入非草稿条目"""
        self._ensure_open()
        title, content = self.composer.snapshot()
        if is_blank(title) or is_blank(content):
            raise FormValidationError(REQUIRED_FIELDS_MESSAGE)
        if self.saving:
            raise OperationInFlight("Entry is being saved")

        values: dict[str, Any] = {"title": title, "content": content, "is_draft": False}
        self.saving = True
        try:
            rows: list[dict[str, Any]] = []
            if self.draft_id is not None:
                rows = await self.client.update(
                    ENTRIES_TABLE,
                    {**values, "updated_at": _now_iso()},
                    match={"id": self.draft_id},
                )
            if not rows:
                rows = await self.client.insert(
                    ENTRIES_TABLE,
                    [{"diary_id": self.diary.id, **values}],
                )
            if not rows:
                raise BackendError("Entry was not saved")
        finally:
            self.saving = False

        entry = Entry.model_validate(rows[0])
        logger.info("[EDITOR] Entry published: diary=%s entry=%s", self.diary.id, entry.id)

        self._stop_autosave()
        self._release_voice()
        if self.mode is EditorMode.NEW:
            self.mode = EditorMode.NONE
        self.composer = FormFields()
        self._form_generation += 1
        self._persisted = FormFields()
        self.draft_id = None
        self.has_unsaved_changes = False
        self.last_saved_at = None
        await self._refresh_quietly()
        return entry

    # ── 编辑已有条目 ────────────────────────────────────────────────

    def open_edit(self, entry_id: RowId, *, confirmed: bool = False) -> Entry:
        self._ensure_open()
        entry = self._find_entry(entry_id)
        if self.mode is EditorMode.NEW:
            self.close_composer(confirmed=confirmed)
        elif self.mode is EditorMode.EDIT:
            self.close_edit(confirmed=confirmed)

        self.mode = EditorMode.EDIT
        self.editing_entry = entry
        self._form_generation += 1
        self.edit_form = FormFields(entry.title or "", entry.content or "")
        self.has_unsaved_changes = False
        self.last_saved_at = None
        self._start_autosave()
        return entry

    async def save_edit(self) -> Entry:
        """编辑弹窗的“保存”按钮：直接更新并关闭弹窗"""
        if self.mode is not EditorMode.EDIT or self.editing_entry is None:
            raise AfterthoughtsError("No entry is being edited")
        title, content = self.edit_form.snapshot()
        if is_blank(title) or is_blank(content):
            raise FormValidationError(REQUIRED_FIELDS_MESSAGE)
        if self.saving:
            raise OperationInFlight("Entry is being saved")

        self.saving = True
        try:
            rows = await self.client.update(
                ENTRIES_TABLE,
                {"title": title, "content": content, "updated_at": _now_iso()},
                match={"id": self.editing_entry.id},
            )
        finally:
            self.saving = False

        entry = (
            Entry.model_validate(rows[0])
            if rows
            else self.editing_entry.model_copy(update={"title": title, "content": content})
        )
        self.has_unsaved_changes = False
        self.close_edit(confirmed=True)
        await self._refresh_quietly()
        return entry

    def close_edit(self, *, confirmed: bool = False) -> None:
        if self.mode is not EditorMode.EDIT:
            return
        self._guard_discard(confirmed)
        self._stop_autosave()
        self._release_voice()
        self.mode = EditorMode.NONE
        self.editing_entry = None
        self.edit_form = FormFields()
        self._form_generation += 1
        self.has_unsaved_changes = False

    # ── 删除 / 离开 ─────────────────────────────────────────────────

    async def delete_entry(self, entry_id: RowId, *, confirmed: bool = False) -> None:
        self._ensure_open()
        if not confirmed:
            raise ConfirmationRequired(DELETE_ENTRY_PROMPT)

        await self.client.delete(ENTRIES_TABLE, match={"id": entry_id})
        self.entries = [e for e in self.entries if not _same_id(e.id, entry_id)]
        logger.info("[EDITOR] Entry deleted: diary=%s entry=%s", self.diary.id, entry_id)

        if self.editing_entry is not None and _same_id(self.editing_entry.id, entry_id):
            self.close_edit(confirmed=True)
        if _same_id(self.draft_id, entry_id):
            self.draft_id = None
            self._persisted = FormFields()

    def before_unload(self) -> bool:
        """原生“确认离开”提示：仅新建 composer 有未保存修改时需要"""
        return self.mode is EditorMode.NEW and self.has_unsaved_changes

    async def navigate_back(self, *, confirmed: bool = False) -> None:
        self._guard_discard(confirmed)
        await self.teardown()

    def _release_voice(self) -> None:
        if self.voice is not None:
            self.voice.finish()

    async def teardown(self) -> None:
        """卸载：同步取消自动保存任务与语音连接（全有或全无）"""
        if self.mode is EditorMode.CLOSED:
            return
        self._stop_autosave()
        if self.voice is not None:
            await self.voice.teardown()
        self.mode = EditorMode.CLOSED
        self.has_unsaved_changes = False
        self._form_generation += 1
        self.editing_entry = None
        logger.debug("[EDITOR] Editor closed: diary=%s", self.diary.id)
