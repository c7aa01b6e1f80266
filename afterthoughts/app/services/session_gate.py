"""登录守卫：挂载时检查会话，缺失则跳转登录；订阅会话变化，登出时跳转"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from ..models import Account, AuthSession

if TYPE_CHECKING:
    from .supabase import AuthSubscription, SupabaseClient

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"
HOME_PATH = "/"


class SessionGate:
    def __init__(
        self,
        client: "SupabaseClient",
        *,
        on_redirect: Callable[[str], None] | None = None,
        on_signed_out: Callable[[], None] | None = None,
    ):
        self.client = client
        self.on_redirect = on_redirect
        self.on_signed_out = on_signed_out
        self.session: AuthSession | None = None
        self.redirect_to: str | None = None
        self._subscription: "AuthSubscription | None" = None

    @property
    def authenticated(self) -> bool:
        return self.session is not None

    @property
    def user(self) -> Account | None:
        return self.session.user if self.session else None

    def _redirect(self, path: str) -> None:
        self.redirect_to = path
        if self.on_redirect is not None:
            self.on_redirect(path)

    async def init(self) -> AuthSession | None:
        """挂载：向认证服务要当前会话，并订阅后续变化（重复调用只订阅一次）"""
        if self._subscription is None:
            self._subscription = self.client.on_auth_state_change(self._on_auth_state_change)

        self.session = await self.client.get_session()
        if self.session is None:
            self._redirect(LOGIN_PATH)
        else:
            self.redirect_to = None
        return self.session

    async def check(self) -> bool:
        """每次请求前复查（可能触发 token 刷新）"""
        self.session = await self.client.get_session()
        return self.session is not None

    def _on_auth_state_change(self, event: str, session: AuthSession | None) -> None:
        had_session = self.session is not None
        self.session = session
        if session is None:
            logger.info("[AUTH] Session ended (%s), redirecting to login", event)
            self._redirect(LOGIN_PATH)
            if had_session and self.on_signed_out is not None:
                self.on_signed_out()
        else:
            self.redirect_to = None

    def teardown(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
