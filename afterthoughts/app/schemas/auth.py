from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class SignupRequest(BaseModel):
    email: str = ""
    password: str = ""
    confirm_password: str = ""
    first_name: str = ""
    last_name: str = ""
    agreed_to_terms: bool = False


class PasswordCheckRequest(BaseModel):
    password: str = ""
    confirm_password: str | None = None


class PasswordRuleResult(BaseModel):
    key: str
    label: str
    ok: bool


class PasswordCheckResponse(BaseModel):
    """密码规则清单（逐条实时显示）"""
    valid: bool
    rules: list[PasswordRuleResult] = Field(default_factory=list)
    passwords_match: bool | None = None


class AccountResponse(BaseModel):
    id: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class SessionResponse(BaseModel):
    """登录守卫状态：未登录时 redirect 指向登录页"""
    authenticated: bool
    user: AccountResponse | None = None
    redirect: str | None = None


class SignupResponse(BaseModel):
    message: str
    redirect: str | None = None


class ActivityRequest(BaseModel):
    kind: str = Field(..., description="pointer / key / scroll / touch / click")


class ActivityResponse(BaseModel):
    accepted: bool
