from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel


class Account(BaseModel):
    """账号 - 由认证服务管理；姓名存放在 user_metadata 里"""

    id: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None

    @classmethod
    def from_auth_user(cls, user: dict[str, Any]) -> "Account":
        meta = user.get("user_metadata") or {}
        if not isinstance(meta, dict):
            meta = {}
        return cls(
            id=str(user.get("id") or ""),
            email=user.get("email"),
            first_name=meta.get("first_name"),
            last_name=meta.get("last_name"),
        )


class AuthSession(BaseModel):
    """认证会话（access_token + refresh_token）"""

    access_token: str
    refresh_token: str | None = None
    expires_at: int | None = None  # unix 秒
    user: Account

    @classmethod
    def from_token_response(cls, data: dict[str, Any]) -> "AuthSession":
        expires_at = data.get("expires_at")
        if expires_at is None and data.get("expires_in") is not None:
            now = int(datetime.now(timezone.utc).timestamp())
            expires_at = now + int(data["expires_in"])
        return cls(
            access_token=str(data.get("access_token") or ""),
            refresh_token=data.get("refresh_token"),
            expires_at=int(expires_at) if expires_at is not None else None,
            user=Account.from_auth_user(data.get("user") or {}),
        )

    def expires_within(self, seconds: int, *, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        now_f = now if now is not None else datetime.now(timezone.utc).timestamp()
        return self.expires_at - now_f <= seconds

