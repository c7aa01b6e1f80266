from __future__ import annotations

from fastapi import APIRouter

from ..schemas import ThemeResponse, ThemeUpdateRequest
from ..services.theme import theme_context

router = APIRouter(prefix="/preferences", tags=["preferences"])


def _theme_response() -> ThemeResponse:
    return ThemeResponse(theme=theme_context.theme, is_dark=theme_context.is_dark)


@router.get("/theme", response_model=ThemeResponse)
async def get_theme():
    return _theme_response()


@router.put("/theme", response_model=ThemeResponse)
async def set_theme(body: ThemeUpdateRequest):
    theme_context.set_dark(body.is_dark)
    return _theme_response()


@router.post("/theme/toggle", response_model=ThemeResponse)
async def toggle_theme():
    theme_context.toggle()
    return _theme_response()
