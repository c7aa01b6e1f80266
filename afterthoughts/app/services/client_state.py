"""每个浏览器一份的客户端状态（登录守卫 + 目录 + 当前打开的编辑器）

说明：
- 浏览器由签名 Cookie 里的 client_id 标识；状态只保存在进程内存里，重启即丢失。
- 所有组件共享同一个 SupabaseClient（同一个登录会话）。
- 切换日记本 / 返回列表 / 登出都会先卸载旧编辑器（取消自动保存任务与语音连接）。
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from ..exceptions import AfterthoughtsError
from ..models import AuthSession, RowId
from ..scheduler import AutosaveScheduler, scheduler as default_scheduler
from .auth_forms import AuthForms
from .diary_directory import DiaryDirectory
from .diary_management import DiaryManager
from .entry_editor import EntryEditor
from .idle_timeout import IdleSessionTimeout
from .session_gate import SessionGate
from .supabase import SupabaseClient
from .timers import Timers, spawn
from .voice_dictation import VoiceDictationAdapter

logger = logging.getLogger(__name__)


class ClientState:
    def __init__(
        self,
        client_id: str,
        *,
        client: SupabaseClient | None = None,
        scheduler: AutosaveScheduler | None = None,
        timers: Timers | None = None,
    ):
        self.client_id = client_id
        self.client = client or SupabaseClient()
        self.scheduler = scheduler or default_scheduler
        self.timers = timers or Timers()

        self.gate = SessionGate(self.client, on_signed_out=self._on_signed_out)
        self.auth_forms = AuthForms(self.client)
        self.idle = IdleSessionTimeout(self.client, timers=self.timers)

        self.directory: DiaryDirectory | None = None
        self.editor: EntryEditor | None = None
        self.voice: VoiceDictationAdapter | None = None
        self.manager: DiaryManager | None = None
        self.last_seen = time.monotonic()

    # ── 会话 ───────────────────────────────────────────────────────

    async def mount(self) -> AuthSession | None:
        session = await self.gate.init()
        if session is not None:
            await self._mount_directory(session)
        return session

    async def _mount_directory(self, session: AuthSession) -> DiaryDirectory:
        if self.directory is None or self.directory.user_id != session.user.id:
            await self._close_editor()
            self.directory = DiaryDirectory(self.client, session.user.id)
            await self.directory.load()
        if not self.idle.running:
            self.idle.start()
        return self.directory

    async def login(self, email: str, password: str) -> AuthSession:
        session = await self.auth_forms.login(email, password)
        await self._mount_directory(session)
        return session

    async def logout(self) -> None:
        await self._unmount()
        await self.client.sign_out()

    def _on_signed_out(self) -> None:
        spawn(self._unmount(), name=f"unmount:{self.client_id}")

    async def _unmount(self) -> None:
        self.idle.stop()
        await self._close_editor()
        self.directory = None

    # ── 日记本 / 编辑器 ────────────────────────────────────────────

    def require_directory(self) -> DiaryDirectory:
        if self.directory is None:
            raise AfterthoughtsError("Not signed in")
        return self.directory

    def require_editor(self) -> EntryEditor:
        if self.editor is None:
            raise LookupError("No diary selected")
        return self.editor

    def require_manager(self) -> DiaryManager:
        if self.manager is None:
            raise LookupError("No diary selected")
        return self.manager

    def require_voice(self) -> VoiceDictationAdapter:
        if self.voice is None:
            raise LookupError("No diary selected")
        return self.voice

    async def select_diary(self, diary_id: RowId, *, confirmed: bool = False) -> EntryEditor:
        directory = self.require_directory()
        diary = directory.get(diary_id)

        if self.editor is not None:
            if str(self.editor.diary.id) == str(diary.id):
                return self.editor
            await self.editor.navigate_back(confirmed=confirmed)
            await self._close_editor()

        directory.select(diary.id)
        editor = EntryEditor(
            self.client,
            diary,
            scheduler=self.scheduler,
            job_id=f"autosave:{self.client_id}:{diary.id}",
        )
        voice = VoiceDictationAdapter(
            get_text=editor.current_content,
            on_transcript=editor.apply_transcript,
            timers=self.timers,
        )
        editor.voice = voice
        self.editor = editor
        self.voice = voice
        self.manager = DiaryManager(
            self.client,
            diary,
            on_updated=self._on_diary_updated,
            on_deleted=self._on_diary_deleted,
        )
        await editor.load()
        return editor

    async def back_to_list(self, *, confirmed: bool = False) -> None:
        if self.editor is not None:
            await self.editor.navigate_back(confirmed=confirmed)
        await self._close_editor()
        if self.directory is not None:
            self.directory.clear_selection()

    async def _close_editor(self) -> None:
        editor = self.editor
        self.editor = None
        self.voice = None
        self.manager = None
        if editor is not None:
            await editor.teardown()

    async def _on_diary_updated(self) -> None:
        directory = self.require_directory()
        await directory.load()
        if self.editor is not None and directory.selected is not None:
            self.editor.diary = directory.selected

    async def _on_diary_deleted(self) -> None:
        await self._close_editor()
        directory = self.require_directory()
        directory.clear_selection()
        await directory.load()

    async def aclose(self) -> None:
        await self._unmount()
        self.gate.teardown()
        await self.client.aclose()


class ClientRegistry:
    """client_id → ClientState；长时间无请求的状态会被回收"""

    def __init__(
        self,
        *,
        factory: Callable[[str], ClientState] = ClientState,
        idle_ttl_seconds: float = 24 * 60 * 60,
    ):
        self.factory = factory
        self.idle_ttl_seconds = idle_ttl_seconds
        self._clients: dict[str, ClientState] = {}
        # 每个 client_id 一把锁：同一浏览器的并发首请求只 mount 一次，不同浏览器互不等待
        self._locks: dict[str, asyncio.Lock] = {}

    def peek(self, client_id: str) -> ClientState | None:
        return self._clients.get(client_id)

    async def get(self, client_id: str) -> ClientState:
        state = self._clients.get(client_id)
        if state is None:
            lock = self._locks.setdefault(client_id, asyncio.Lock())
            async with lock:
                state = self._clients.get(client_id)
                if state is None:
                    state = self.factory(client_id)
                    try:
                        await state.mount()
                    except BaseException:
                        await state.aclose()
                        raise
                    self._clients[client_id] = state
                    logger.debug("[CLIENT] Client state created: %s", client_id)
        state.last_seen = time.monotonic()
        return state

    async def drop(self, client_id: str) -> None:
        state = self._clients.pop(client_id, None)
        self._locks.pop(client_id, None)
        if state is not None:
            await state.aclose()

    async def prune(self) -> int:
        cutoff = time.monotonic() - self.idle_ttl_seconds
        stale = [cid for cid, s in self._clients.items() if s.last_seen < cutoff]
        for cid in stale:
            await self.drop(cid)
        return len(stale)

    async def aclose_all(self) -> None:
        for cid in list(self._clients):
            await self.drop(cid)


# 全局客户端状态表
registry = ClientRegistry()
