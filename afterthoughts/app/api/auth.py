"""Auth API：登录 / 注册 / 会话 / 登出 / 空闲活动上报"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from ..schemas import (
    AccountResponse,
    ActivityRequest,
    ActivityResponse,
    LoginRequest,
    PasswordCheckRequest,
    PasswordCheckResponse,
    PasswordRuleResult,
    SessionResponse,
    SignupRequest,
    SignupResponse,
)
from ..services.auth_forms import SignupForm, is_password_valid, password_checklist
from ..services.client_state import ClientState
from ..services.session_gate import HOME_PATH, LOGIN_PATH
from .deps import get_client_state

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


def _session_response(state: ClientState, *, redirect: str | None = None) -> SessionResponse:
    user = state.gate.user
    if user is None:
        return SessionResponse(authenticated=False, redirect=state.gate.redirect_to or LOGIN_PATH)
    return SessionResponse(
        authenticated=True,
        user=AccountResponse(**user.model_dump()),
        redirect=redirect,
    )


@router.get("/session", response_model=SessionResponse)
async def get_session(state: ClientState = Depends(get_client_state)):
    await state.gate.check()
    return _session_response(state)


@router.post("/login", response_model=SessionResponse)
async def login(body: LoginRequest, state: ClientState = Depends(get_client_state)):
    await state.login(body.email, body.password)
    return _session_response(state, redirect=HOME_PATH)


@router.post("/signup", response_model=SignupResponse)
async def signup(body: SignupRequest, state: ClientState = Depends(get_client_state)):
    message = await state.auth_forms.signup(SignupForm(**body.model_dump()))
    return SignupResponse(message=message, redirect=LOGIN_PATH)


@router.post("/password-check", response_model=PasswordCheckResponse)
async def password_check(body: PasswordCheckRequest):
    """不需要登录；不会把密码发给认证服务"""
    rules = [PasswordRuleResult(**item) for item in password_checklist(body.password)]
    match = None
    if body.confirm_password is not None:
        match = bool(body.password) and body.password == body.confirm_password
    return PasswordCheckResponse(valid=is_password_valid(body.password), rules=rules, passwords_match=match)


@router.post("/logout", response_model=SessionResponse)
async def logout(state: ClientState = Depends(get_client_state)):
    logger.info("[AUTH] Logout requested: client=%s", state.client_id)
    await state.logout()
    return SessionResponse(authenticated=False, redirect=LOGIN_PATH)


@router.post("/activity", response_model=ActivityResponse)
async def activity(body: ActivityRequest, state: ClientState = Depends(get_client_state)):
    return ActivityResponse(accepted=state.idle.record_activity(body.kind))
