"""托管后端客户端（Supabase 兼容：GoTrue 认证 + PostgREST 数据表）

说明：
- 本项目不实现自己的持久化与认证：所有读写都直连托管后端，行级权限由后端负责。
- 每个浏览器（ClientState）持有一个独立的 SupabaseClient，会话只保存在内存里。
- 只对 GET 做网络重试；insert/update/delete 只发一次，避免网络瞬断导致重复写入。
- 带用户令牌的请求发出前先检查 access_token，快过期就刷新（并发请求共用一次刷新）。
- 会话变化（登录/登出/刷新失败）通过 on_auth_state_change 通知订阅者。
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import httpx

from ..config import settings
from ..exceptions import AuthError, BackendError
from ..models import Account, AuthSession
from ..utils.errors import safe_str
from .http_client import request_with_retry, retry_suffix

logger = logging.getLogger(__name__)

AuthStateCallback = Callable[[str, AuthSession | None], None]

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"
USER_UPDATED = "USER_UPDATED"


def _error_message(resp: httpx.Response) -> tuple[str, str | None]:
    """从 GoTrue / PostgREST 的错误响应里取出可读 message 与 code。"""
    try:
        data: Any = resp.json()
    except Exception:
        data = None

    if isinstance(data, dict):
        for key in ("msg", "message", "error_description", "error"):
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                code = data.get("code") or data.get("error_code")
                return value.strip(), str(code) if code is not None else None
    text = safe_str(resp.text or "", max_len=200)
    return text or f"HTTP {resp.status_code}", None


def _format_filter_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


class AuthSubscription:
    """on_auth_state_change 的订阅句柄；unsubscribe 可重复调用。"""

    def __init__(self, listeners: list[AuthStateCallback], callback: AuthStateCallback):
        self._listeners = listeners
        self._callback = callback

    def unsubscribe(self) -> None:
        try:
            self._listeners.remove(self._callback)
        except ValueError:
            pass


class SupabaseClient:
    """托管后端的最小异步客户端"""

    def __init__(
        self,
        *,
        url: str | None = None,
        anon_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.url = (url or settings.supabase_url or "").rstrip("/")
        self.anon_key = anon_key or settings.supabase_anon_key or ""
        if not self.url or not self.anon_key:
            raise BackendError("Backend is not configured (SUPABASE_URL / SUPABASE_ANON_KEY)")

        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=settings.supabase_http_timeout_seconds,
        )
        self._session: AuthSession | None = None
        self._listeners: list[AuthStateCallback] = []
        # 并发请求共享同一次刷新
        self._refresh_lock = asyncio.Lock()

    # ── 基础请求 ───────────────────────────────────────────────────

    def _headers(self, *, authorized: bool = True) -> dict[str, str]:
        token = self._session.access_token if (authorized and self._session) else self.anon_key
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        error_cls: type[BackendError] = BackendError,
        authorized: bool = True,
        extra_headers: dict[str, str] | None = None,
        refresh: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        if authorized and refresh and self._session is not None:
            # 带用户令牌的请求先确保 access_token 未过期（定时自动保存可能跨越令牌有效期）
            if await self.get_session() is None:
                raise AuthError("Session expired, please log in again", status_code=401)
        headers = self._headers(authorized=authorized)
        if extra_headers:
            headers.update(extra_headers)

        try:
            resp = await request_with_retry(
                client=self._http,
                method=method,
                url=f"{self.url}{path}",
                headers=headers,
                max_attempts=settings.supabase_http_max_attempts,
                backoff_seconds=settings.supabase_http_retry_backoff_seconds,
                max_backoff_seconds=settings.supabase_http_retry_max_backoff_seconds,
                jitter_ratio=settings.supabase_http_retry_jitter_ratio,
                **kwargs,
            )
        except httpx.RequestError as e:
            raise error_cls(f"Network error: {safe_str(e)}{retry_suffix(e)}") from e

        if resp.status_code >= 400:
            message, code = _error_message(resp)
            raise error_cls(message, status_code=resp.status_code, code=code)
        return resp

    # ── 认证 / 会话 ───────────────────────────────────────────────

    @property
    def session(self) -> AuthSession | None:
        return self._session

    def on_auth_state_change(self, callback: AuthStateCallback) -> AuthSubscription:
        self._listeners.append(callback)
        return AuthSubscription(self._listeners, callback)

    def _emit(self, event: str, session: AuthSession | None) -> None:
        for callback in list(self._listeners):
            try:
                callback(event, session)
            except Exception:
                logger.exception("[AUTH] Auth state listener failed: event=%s", event)

    def _set_session(self, session: AuthSession | None, event: str) -> None:
        self._session = session
        self._emit(event, session)

    async def get_session(self) -> AuthSession | None:
        """返回当前会话；快过期时先用 refresh_token 刷新，刷新失败视为登出。"""
        margin = int(settings.supabase_session_refresh_margin_seconds or 0)
        session = self._session
        if session is None or not session.expires_within(margin):
            return session

        async with self._refresh_lock:
            # 等锁期间可能已被其他请求刷新或登出
            session = self._session
            if session is None or not session.expires_within(margin):
                return session
            return await self._refresh_session(session)

    async def _refresh_session(self, session: AuthSession) -> AuthSession | None:
        if not session.refresh_token:
            logger.info("[AUTH] Session expired without refresh token: user=%s", session.user.id)
            self._set_session(None, SIGNED_OUT)
            return None

        try:
            resp = await self._request(
                "POST",
                "/auth/v1/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": session.refresh_token},
                error_cls=AuthError,
                authorized=False,
            )
        except AuthError as e:
            logger.warning("[AUTH] Session refresh failed: %s", e.message)
            self._set_session(None, SIGNED_OUT)
            return None

        refreshed = AuthSession.from_token_response(resp.json())
        self._set_session(refreshed, TOKEN_REFRESHED)
        return refreshed

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        resp = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            error_cls=AuthError,
            authorized=False,
        )
        session = AuthSession.from_token_response(resp.json())
        self._set_session(session, SIGNED_IN)
        logger.info("[AUTH] Signed in: user=%s", session.user.id)
        return session

    async def sign_up(
        self,
        email: str,
        password: str,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> tuple[Account | None, AuthSession | None]:
        """注册；开启邮箱确认时只返回 user（没有会话）。"""
        payload: dict[str, Any] = {"email": email, "password": password}
        if metadata:
            payload["data"] = metadata

        resp = await self._request(
            "POST",
            "/auth/v1/signup",
            json=payload,
            error_cls=AuthError,
            authorized=False,
        )
        data: Any = resp.json()
        if not isinstance(data, dict):
            return None, None

        if data.get("access_token"):
            session = AuthSession.from_token_response(data)
            self._set_session(session, SIGNED_IN)
            return session.user, session

        user = data.get("user") if isinstance(data.get("user"), dict) else data
        if isinstance(user, dict) and user.get("id"):
            return Account.from_auth_user(user), None
        return None, None

    async def update_user(self, metadata: dict[str, Any]) -> Account:
        if self._session is None:
            raise AuthError("Not signed in")
        resp = await self._request(
            "PUT",
            "/auth/v1/user",
            json={"data": metadata},
            error_cls=AuthError,
        )
        account = Account.from_auth_user(resp.json())
        self._session = self._session.model_copy(update={"user": account})
        self._emit(USER_UPDATED, self._session)
        return account

    async def sign_out(self) -> None:
        """登出；即使后端请求失败，本地会话也会被清除。"""
        session = self._session
        if session is None:
            return
        try:
            await self._request("POST", "/auth/v1/logout", error_cls=AuthError, refresh=False)
        except AuthError as e:
            logger.warning("[AUTH] Remote sign-out failed (local session cleared): %s", e.message)
        finally:
            self._set_session(None, SIGNED_OUT)
            logger.info("[AUTH] Signed out: user=%s", session.user.id)

    async def health(self) -> bool:
        await self._request("GET", "/auth/v1/health", authorized=False)
        return True

    # ── 数据表（PostgREST） ─────────────────────────────────────────

    async def select(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        order: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
        columns: str = "*",
    ) -> list[dict[str, Any]]:
        params: dict[str, str] = {"select": columns}
        for key, value in (filters or {}).items():
            params[key] = f"eq.{_format_filter_value(value)}"
        if order:
            params["order"] = f"{order}.{'asc' if ascending else 'desc'}"
        if limit is not None:
            params["limit"] = str(int(limit))

        resp = await self._request("GET", f"/rest/v1/{table}", params=params)
        data: Any = resp.json()
        return data if isinstance(data, list) else []

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        resp = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=rows,
            extra_headers={"Prefer": "return=representation"},
        )
        data: Any = resp.json()
        return data if isinstance(data, list) else []

    async def update(
        self,
        table: str,
        values: dict[str, Any],
        *,
        match: dict[str, Any],
    ) -> list[dict[str, Any]]:
        if not match:
            raise ValueError("update requires a match filter")
        params = {key: f"eq.{_format_filter_value(value)}" for key, value in match.items()}
        resp = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=params,
            json=values,
            extra_headers={"Prefer": "return=representation"},
        )
        data: Any = resp.json()
        return data if isinstance(data, list) else []

    async def delete(self, table: str, *, match: dict[str, Any]) -> None:
        if not match:
            raise ValueError("delete requires a match filter")
        params = {key: f"eq.{_format_filter_value(value)}" for key, value in match.items()}
        await self._request("DELETE", f"/rest/v1/{table}", params=params)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
