from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from ..config import settings
from ..exceptions import BackendError
from ..services.client_state import registry
from ..utils.client_token import issue_client_token, new_client_id, verify_client_token

logger = logging.getLogger(__name__)


def _is_https(request: Request) -> bool:
    if (request.url.scheme or "").lower() == "https":
        return True

    xf_proto = request.headers.get("x-forwarded-proto")
    if xf_proto:
        first = xf_proto.split(",")[0].strip().lower()
        if first == "https":
            return True
    return False


def _resolve_cookie_secure(request: Request) -> bool:
    raw = settings.client_cookie_secure
    if raw == "true":
        return True
    if raw == "false":
        return False
    return _is_https(request)


class SessionGateMiddleware(BaseHTTPMiddleware):
    """登录守卫：给每个浏览器发放 client Cookie，并拦截未登录的 API 请求。"""

    def __init__(self, app):
        super().__init__(app)
        api_prefix = (settings.api_prefix or "/api").rstrip("/")
        self._api_prefix = api_prefix if api_prefix else "/api"
        raw = (settings.session_whitelist_paths or "").strip()
        self._whitelist = {p.strip() for p in raw.split(",") if p.strip()}

    async def dispatch(self, request: Request, call_next) -> Response:
        # CORS 预检必须放行
        if request.method.upper() == "OPTIONS":
            return await call_next(request)

        path = request.url.path or ""
        if not path.startswith(f"{self._api_prefix}/"):
            return await call_next(request)

        client_id, _reason = verify_client_token(
            request.cookies.get(settings.client_cookie_name),
            secret=settings.client_session_secret or "",
        )
        issue_cookie = client_id is None
        if client_id is None:
            client_id = new_client_id()
        request.state.client_id = client_id

        if path not in self._whitelist:
            try:
                state = await registry.get(client_id)
            except BackendError as e:
                logger.warning("[SESSION] Session check failed: %s", e.message)
                return JSONResponse({"detail": e.message, "code": "BACKEND_ERROR"}, status_code=502)
            if not state.gate.authenticated:
                response: Response = JSONResponse(
                    {"detail": "LOGIN_REQUIRED", "redirect": state.gate.redirect_to or "/login"},
                    status_code=401,
                )
                if issue_cookie:
                    self._set_cookie(request, response, client_id)
                return response

        response = await call_next(request)
        if issue_cookie:
            self._set_cookie(request, response, client_id)
        return response

    def _set_cookie(self, request: Request, response: Response, client_id: str) -> None:
        max_age = int(settings.client_session_days) * 24 * 60 * 60
        response.set_cookie(
            key=settings.client_cookie_name,
            value=issue_client_token(
                secret=settings.client_session_secret or "",
                client_id=client_id,
                days=settings.client_session_days,
            ),
            max_age=max_age,
            expires=datetime.now(timezone.utc) + timedelta(seconds=max_age),
            httponly=True,
            samesite=settings.client_cookie_samesite,
            secure=_resolve_cookie_secure(request),
            path="/",
        )
