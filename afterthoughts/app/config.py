from __future__ import annotations

import secrets
from pathlib import Path

from dotenv import load_dotenv
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_APP_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _APP_DIR.parent
_REPO_ROOT = _PACKAGE_DIR.parent


def _load_root_dotenv() -> None:
    """
    统一从仓库根目录读取 `.env`（并保证其优先级最高）。

    说明：
    - 启动脚本通常会 `cd afterthoughts`，导致工具默认只会找子目录下的 `.env`。
    - 这里显式加载：先加载 `afterthoughts/.env`，再加载根目录 `.env`，并且 `override=True`。
    """

    package_env = _PACKAGE_DIR / ".env"
    root_env = _REPO_ROOT / ".env"

    for env_file in (package_env, root_env):
        if env_file.exists():
            load_dotenv(env_file, override=True, encoding="utf-8")


def _split_csv(value: str | None) -> list[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


class Settings(BaseSettings):
    """Application settings"""

    # Server（供 run.py 使用）
    backend_host: str = "0.0.0.0"
    backend_port: int = 31012
    backend_reload: bool = True

    # API
    api_prefix: str = "/api"
    debug: bool = True

    # CORS
    # - 逗号分隔（例如：http://localhost:5173,http://127.0.0.1:5173）
    # - 默认 "*" 表示允许所有来源（此时会强制关闭 allow_credentials）
    cors_allow_origins: str = "*"
    cors_allow_credentials: bool = False
    cors_allow_methods: str = "*"
    cors_allow_headers: str = "*"

    # 托管后端（Supabase 兼容：/auth/v1 + /rest/v1）
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    supabase_http_timeout_seconds: float = 15.0
    # 只对幂等请求（GET）做网络重试；写操作只发一次，避免重复插入
    supabase_http_max_attempts: int = 3
    supabase_http_retry_backoff_seconds: float = 0.5
    supabase_http_retry_max_backoff_seconds: float = 5.0
    supabase_http_retry_jitter_ratio: float = 0.1
    # access_token 距离过期不足该秒数时，get_session 会先刷新
    supabase_session_refresh_margin_seconds: int = 60

    # 语音转写（Soniox）
    soniox_api_key: str | None = None
    soniox_api_base_url: str = "https://api.soniox.com"
    soniox_websocket_url: str = "wss://stt-rt.soniox.com/transcribe-websocket"
    soniox_model: str = "stt-rt-preview"
    # 顺序即优先级：英语优先，其次泰卢固语
    soniox_language_hints: str = "en,te"
    soniox_enable_language_identification: bool = True
    soniox_temporary_key_ttl_seconds: int = 60
    soniox_keepalive_interval_seconds: float = 5.0
    # 发送结束帧后等待 finished 的上限；超时直接断开
    soniox_finish_timeout_seconds: float = 5.0

    # 编辑器自动保存
    autosave_interval_seconds: float = 10.0

    # 语音输入状态机
    voice_inactivity_timeout_seconds: float = 30.0
    voice_debounce_seconds: float = 1.0
    voice_error_clear_seconds: float = 5.0

    # 会话空闲超时（无指针/键盘/滚动/触摸/点击活动即主动登出）
    session_idle_timeout_minutes: int = 30

    # 浏览器客户端标识 Cookie（每个浏览器对应一份 ClientState）
    client_session_secret: str | None = None
    client_session_days: int = 30
    client_cookie_name: str = "afterthoughts_client"
    client_cookie_samesite: str = "lax"  # lax | strict | none
    client_cookie_secure: str = "auto"  # auto | true | false

    # 逗号分隔：完全匹配 path（不含 query）时不做登录校验（默认包含登录/注册/主题等）
    session_whitelist_paths: str | None = None

    # 本地持久化的键值存储（暗色模式开关）
    preferences_path: str = "afterthoughts_prefs.json"

    @model_validator(mode="after")
    def _normalize_backend(self) -> "Settings":
        url = (self.supabase_url or "").strip().rstrip("/")
        self.supabase_url = url or None
        key = (self.supabase_anon_key or "").strip()
        self.supabase_anon_key = key or None

        if self.supabase_http_timeout_seconds <= 0:
            self.supabase_http_timeout_seconds = 15.0
        if int(self.supabase_http_max_attempts or 0) <= 0:
            self.supabase_http_max_attempts = 1
        return self

    @model_validator(mode="after")
    def _normalize_timers(self) -> "Settings":
        if self.autosave_interval_seconds <= 0:
            self.autosave_interval_seconds = 10.0
        if self.voice_inactivity_timeout_seconds <= 0:
            self.voice_inactivity_timeout_seconds = 30.0
        if self.voice_debounce_seconds < 0:
            self.voice_debounce_seconds = 1.0
        if self.voice_error_clear_seconds <= 0:
            self.voice_error_clear_seconds = 5.0
        if int(self.session_idle_timeout_minutes or 0) <= 0:
            self.session_idle_timeout_minutes = 30
        if int(self.soniox_temporary_key_ttl_seconds or 0) <= 0:
            self.soniox_temporary_key_ttl_seconds = 60
        if self.soniox_finish_timeout_seconds <= 0:
            self.soniox_finish_timeout_seconds = 5.0
        return self

    @model_validator(mode="after")
    def _normalize_client_cookie(self) -> "Settings":
        secret = (self.client_session_secret or "").strip()
        if not secret:
            # 未配置时每次启动随机生成：重启后旧 Cookie 失效，浏览器需要重新登录
            secret = secrets.token_urlsafe(32)
        self.client_session_secret = secret

        if int(self.client_session_days or 0) <= 0:
            self.client_session_days = 30

        if not (self.client_cookie_name or "").strip():
            self.client_cookie_name = "afterthoughts_client"

        samesite = (self.client_cookie_samesite or "lax").strip().lower()
        if samesite not in {"lax", "strict", "none"}:
            samesite = "lax"
        self.client_cookie_samesite = samesite

        secure = (self.client_cookie_secure or "auto").strip().lower()
        if secure not in {"auto", "true", "false"}:
            secure = "auto"
        self.client_cookie_secure = secure

        raw_whitelist = (self.session_whitelist_paths or "").strip()
        if not raw_whitelist:
            api_prefix = (self.api_prefix or "/api").rstrip("/") or "/api"
            self.session_whitelist_paths = ",".join(
                [
                    f"{api_prefix}/auth/login",
                    f"{api_prefix}/auth/signup",
                    f"{api_prefix}/auth/session",
                    f"{api_prefix}/auth/password-check",
                    f"{api_prefix}/preferences/theme",
                    f"{api_prefix}/preferences/theme/toggle",
                ]
            )
        return self

    @property
    def cors_options(self) -> dict[str, object]:
        """CORSMiddleware 参数；origins 为 "*" 时浏览器不允许带凭据，强制关闭 allow_credentials"""
        origins = _split_csv(self.cors_allow_origins)
        wildcard = not origins or origins == ["*"]
        return {
            "allow_origins": ["*"] if wildcard else origins,
            "allow_credentials": False if wildcard else bool(self.cors_allow_credentials),
            "allow_methods": _split_csv(self.cors_allow_methods) or ["*"],
            "allow_headers": _split_csv(self.cors_allow_headers) or ["*"],
        }

    @property
    def language_hints(self) -> list[str]:
        return _split_csv(self.soniox_language_hints) or ["en"]

    @property
    def session_idle_timeout_seconds(self) -> float:
        return float(self.session_idle_timeout_minutes) * 60

    def resolve_preferences_path(self) -> Path:
        path = Path(self.preferences_path)
        if not path.is_absolute():
            path = (_REPO_ROOT / path).resolve()
        return path

    model_config = SettingsConfigDict(
        case_sensitive=False
    )


_load_root_dotenv()
settings = Settings()
