"""FastAPI application entry point"""
import logging
import uuid
from pathlib import Path
import tomllib

from fastapi import FastAPI, HTTPException, Request
from fastapi.exception_handlers import (
    http_exception_handler as fastapi_http_exception_handler,
    request_validation_exception_handler,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .api import (
    auth_router,
    diaries_router,
    editor_router,
    voice_router,
    preferences_router,
)
from .exceptions import (
    AfterthoughtsError,
    AuthError,
    BackendError,
    ConfirmationRequired,
    FormValidationError,
    OperationInFlight,
    SpeechServiceError,
)
from .scheduler import scheduler
from .middleware.session_gate import SessionGateMiddleware
from .services.client_state import registry
from .services.supabase import SupabaseClient
from .services.theme import theme_context
from .utils.errors import exception_summary, user_message

logger = logging.getLogger(__name__)


def _read_app_version() -> str:
    """尽量从仓库根目录的 pyproject.toml 读取版本，避免多处硬编码导致不一致。"""
    try:
        repo_root = Path(__file__).resolve().parents[2]
        pyproject = repo_root / "pyproject.toml"
        if not pyproject.exists():
            return "0.1.0"
        data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
        version = ((data.get("project") or {}).get("version") or "").strip()
        return version or "0.1.0"
    except (OSError, ValueError):
        return "0.1.0"


APP_VERSION = _read_app_version()

app = FastAPI(
    title="afterThoughts API",
    description="Journaling client: diaries, auto-saved drafts and voice dictation",
    version=APP_VERSION,
)

# CORS
app.add_middleware(CORSMiddleware, **settings.cors_options)

# 登录守卫（client Cookie + 未登录拦截）
app.add_middleware(SessionGateMiddleware)


def _normalize_request_id(value: str | None) -> str | None:
    """对外部传入的 request id 做一次简单归一化，避免日志注入/过长字符串。"""
    if not value or not isinstance(value, str):
        return None
    s = value.strip()
    if not s:
        return None
    if len(s) > 64:
        return None
    if any(ord(ch) < 32 for ch in s):
        return None
    return s


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """为每个请求生成/透传 X-Request-Id，并写入响应头。"""
    incoming = request.headers.get("x-request-id") or request.headers.get("x-correlation-id")
    rid = _normalize_request_id(incoming) or uuid.uuid4().hex
    request.state.request_id = rid

    response = await call_next(request)
    response.headers["X-Request-Id"] = rid
    return response


def _request_id(request: Request) -> str | None:
    return getattr(getattr(request, "state", None), "request_id", None)


def _error_response(request: Request, status_code: int, payload: dict[str, object]) -> JSONResponse:
    rid = _request_id(request)
    if rid:
        payload["request_id"] = rid
    headers = {"X-Request-Id": rid} if rid else None
    return JSONResponse(payload, status_code=status_code, headers=headers)


@app.exception_handler(HTTPException)
async def http_exception_handler_with_request_id(request: Request, exc: HTTPException):
    response = await fastapi_http_exception_handler(request, exc)
    if rid := _request_id(request):
        response.headers["X-Request-Id"] = rid
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler_with_request_id(request: Request, exc: RequestValidationError):
    response = await request_validation_exception_handler(request, exc)
    if rid := _request_id(request):
        response.headers["X-Request-Id"] = rid
    return response


@app.exception_handler(ConfirmationRequired)
async def confirmation_required_handler(request: Request, exc: ConfirmationRequired):
    return _error_response(request, 409, {"detail": "CONFIRMATION_REQUIRED", "message": exc.prompt})


@app.exception_handler(OperationInFlight)
async def operation_in_flight_handler(request: Request, exc: OperationInFlight):
    return _error_response(request, 409, {"detail": "IN_FLIGHT", "message": str(exc)})


@app.exception_handler(FormValidationError)
async def form_validation_handler(request: Request, exc: FormValidationError):
    return _error_response(request, 422, {"detail": "VALIDATION_ERROR", "message": str(exc)})


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    return _error_response(request, 401, {"detail": "AUTH_ERROR", "message": exc.message})


@app.exception_handler(BackendError)
async def backend_error_handler(request: Request, exc: BackendError):
    logger.warning("[BACKEND] %s (status=%s code=%s)", exc.message, exc.status_code, exc.code)
    return _error_response(request, 502, {"detail": "BACKEND_ERROR", "message": user_message(exc)})


@app.exception_handler(SpeechServiceError)
async def speech_service_error_handler(request: Request, exc: SpeechServiceError):
    return _error_response(request, 502, {"detail": "SPEECH_ERROR", "message": user_message(exc)})


@app.exception_handler(LookupError)
async def not_found_handler(request: Request, exc: LookupError):
    message = exc.args[0] if exc.args else "NOT_FOUND"
    return _error_response(request, 404, {"detail": "NOT_FOUND", "message": str(message)})


@app.exception_handler(AfterthoughtsError)
async def afterthoughts_error_handler(request: Request, exc: AfterthoughtsError):
    return _error_response(request, 400, {"detail": "BAD_REQUEST", "message": user_message(exc)})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("[UNHANDLED] request_id=%s", _request_id(request) or "-")

    # 对外默认不泄露内部异常细节；debug 时给一个可读摘要便于定位
    detail = "INTERNAL_ERROR"
    if settings.debug:
        detail = exception_summary(exc, max_len=200)
    return _error_response(request, 500, {"detail": detail})

# Register API routers
app.include_router(auth_router, prefix=settings.api_prefix)
app.include_router(diaries_router, prefix=settings.api_prefix)
app.include_router(editor_router, prefix=settings.api_prefix)
app.include_router(voice_router, prefix=settings.api_prefix)
app.include_router(preferences_router, prefix=settings.api_prefix)


@app.on_event("startup")
async def startup_event():
    """Load preferences and start the autosave scheduler"""
    theme_context.init()
    scheduler.start()
    # 回收长时间没有请求的浏览器状态
    scheduler.add_interval_job("client-prune", registry.prune, seconds=60 * 60)
    logger.info("[STARTUP] afterThoughts %s ready (theme=%s)", APP_VERSION, theme_context.theme)


@app.on_event("shutdown")
async def shutdown_event():
    """Tear down every client state, then stop the scheduler"""
    await registry.aclose_all()
    scheduler.shutdown()
    theme_context.teardown()


@app.get("/")
async def root():
    """Root endpoint"""
    return {"message": "afterThoughts API", "version": APP_VERSION}


@app.get("/health")
async def health_check():
    """Health check endpoint（包含托管认证服务可用性探测）。"""
    client: SupabaseClient | None = None
    try:
        client = SupabaseClient()
        await client.health()
    except BackendError as e:
        logger.warning("[HEALTH] Backend check failed: %s", e.message)
        raise HTTPException(status_code=503, detail="BACKEND_UNAVAILABLE") from e
    finally:
        if client is not None:
            await client.aclose()

    return {"status": "healthy", "backend": "ok"}
