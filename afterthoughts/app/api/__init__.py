from .auth import router as auth_router
from .diaries import router as diaries_router
from .editor import router as editor_router
from .voice import router as voice_router
from .preferences import router as preferences_router

__all__ = [
    "auth_router",
    "diaries_router",
    "editor_router",
    "voice_router",
    "preferences_router",
]
