"""登录 / 注册表单逻辑

- 登录直接委托给认证服务。
- 注册前在本地校验密码强度（5 条规则）、确认密码一致、已勾选条款、必填项齐全；
  不通过的表单不会发给后端。
- 注册错误里如果只是“需要邮箱确认”之类的提示，按成功处理（有意放宽）。
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pydantic import BaseModel

from ..exceptions import AuthError, FormValidationError
from ..models import AuthSession
from ..utils.text import is_blank

if TYPE_CHECKING:
    from .supabase import SupabaseClient

logger = logging.getLogger(__name__)

SIGNUP_SUCCESS_MESSAGE = "Account created successfully. Please log in."


@dataclass(frozen=True)
class PasswordRule:
    key: str
    pattern: re.Pattern[str]
    label: str

    def check(self, password: str) -> bool:
        return bool(self.pattern.search(password or ""))


PASSWORD_RULES: tuple[PasswordRule, ...] = (
    PasswordRule("min_length", re.compile(r".{8,}"), "At least 8 characters"),
    PasswordRule("uppercase", re.compile(r"[A-Z]"), "At least one uppercase letter"),
    PasswordRule("lowercase", re.compile(r"[a-z]"), "At least one lowercase letter"),
    PasswordRule("number", re.compile(r"[0-9]"), "At least one number"),
    PasswordRule(
        "special",
        re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]"),
        "At least one special character",
    ),
)


def validate_password(password: str) -> dict[str, bool]:
    """逐条规则的通过情况（注册表单实时勾选清单用）"""
    return {rule.key: rule.check(password) for rule in PASSWORD_RULES}


def is_password_valid(password: str) -> bool:
    return all(validate_password(password).values())


def password_checklist(password: str) -> list[dict[str, object]]:
    results = validate_password(password)
    return [{"key": rule.key, "label": rule.label, "ok": results[rule.key]} for rule in PASSWORD_RULES]


class SignupForm(BaseModel):
    email: str = ""
    password: str = ""
    confirm_password: str = ""
    first_name: str = ""
    last_name: str = ""
    agreed_to_terms: bool = False

    @property
    def passwords_match(self) -> bool:
        return bool(self.password) and self.confirm_password == self.password

    def validate_for_submit(self) -> None:
        """与原表单的提交按钮可用条件一致；任何一条不满足都不会发请求"""
        if not is_password_valid(self.password):
            raise FormValidationError("Password does not meet all requirements")
        if not self.passwords_match:
            raise FormValidationError("Passwords do not match")
        if any(is_blank(v) for v in (self.email, self.first_name, self.last_name)):
            raise FormValidationError("Email, first name and last name are required")
        if not self.agreed_to_terms:
            raise FormValidationError("You must agree to the Terms and Conditions")


def _is_email_confirmation_notice(error: AuthError) -> bool:
    return "email" in (error.message or "").lower()


class AuthForms:
    def __init__(self, client: "SupabaseClient"):
        self.client = client

    async def login(self, email: str, password: str) -> AuthSession:
        if is_blank(email) or not password:
            raise FormValidationError("Email and password are required")
        return await self.client.sign_in_with_password(email.strip(), password)

    async def signup(self, form: SignupForm) -> str:
        form.validate_for_submit()

        metadata = {"first_name": form.first_name.strip(), "last_name": form.last_name.strip()}
        try:
            user, session = await self.client.sign_up(
                form.email.strip(),
                form.password,
                metadata=metadata,
            )
        except AuthError as e:
            if not _is_email_confirmation_notice(e):
                raise
            logger.info("[AUTH] Signup pending email confirmation: %s", e.message)
            return SIGNUP_SUCCESS_MESSAGE

        if user is None:
            raise AuthError("Failed to create account")

        # 自动确认的项目会直接返回会话：补写一次资料，然后回到登录表单
        if session is not None:
            await self.client.update_user(metadata)
            await self.client.sign_out()
        logger.info("[AUTH] Account created: user=%s", user.id)
        return SIGNUP_SUCCESS_MESSAGE
