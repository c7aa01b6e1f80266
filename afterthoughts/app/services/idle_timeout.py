"""会话空闲超时：30 分钟内没有任何用户活动就主动登出"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..config import settings
from .timers import TimerHandle, Timers, cancel_timer, spawn

if TYPE_CHECKING:
    from .supabase import SupabaseClient

logger = logging.getLogger(__name__)

ACTIVITY_EVENTS = frozenset({"pointer", "key", "scroll", "touch", "click"})


class IdleSessionTimeout:
    def __init__(
        self,
        client: "SupabaseClient",
        *,
        timeout_seconds: float | None = None,
        timers: Timers | None = None,
    ):
        self.client = client
        self.timeout_seconds = float(timeout_seconds or settings.session_idle_timeout_seconds)
        self.timers = timers or Timers()
        self._timer: TimerHandle | None = None
        self.expired = False

    @property
    def running(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        self.expired = False
        self._arm()

    def _arm(self) -> None:
        cancel_timer(self._timer)
        self._timer = self.timers.call_later(self.timeout_seconds, self._expire)

    def record_activity(self, kind: str) -> bool:
        """只有指针/键盘/滚动/触摸/点击算作活动；未启动时忽略"""
        if kind not in ACTIVITY_EVENTS or self._timer is None:
            return False
        self._arm()
        return True

    def _expire(self) -> None:
        self._timer = None
        self.expired = True
        logger.info("[AUTH] Session idle for %s minutes, signing out", int(self.timeout_seconds // 60))
        spawn(self.client.sign_out(), name="idle-sign-out")

    def stop(self) -> None:
        cancel_timer(self._timer)
        self._timer = None
