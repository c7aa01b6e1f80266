from pydantic import BaseModel


class ThemeResponse(BaseModel):
    theme: str
    is_dark: bool


class ThemeUpdateRequest(BaseModel):
    is_dark: bool
