"""客户端核心的异常类型

约定：
- 校验失败（FormValidationError）在提交前拦截，绝不会发到托管后端。
- 需要用户确认的破坏性操作抛出 ConfirmationRequired；“拒绝”即不再带 confirmed 重发。
- 托管后端 / 语音服务的请求失败统一包装为 BackendError / SpeechServiceError，
  上层只需展示 message，本地状态保持不变。
"""

from __future__ import annotations


class AfterthoughtsError(Exception):
    """所有客户端异常的基类"""


class FormValidationError(AfterthoughtsError):
    """表单校验失败（空标题、密码规则、确认密码不一致等）"""


class ConfirmationRequired(AfterthoughtsError):
    """操作会丢弃未保存内容或删除数据，需要用户确认后重试"""

    def __init__(self, prompt: str):
        super().__init__(prompt)
        self.prompt = prompt


class OperationInFlight(AfterthoughtsError):
    """同类操作仍在进行中（saving / creating 等），拒绝重复提交"""


class BackendError(AfterthoughtsError):
    """托管后端（认证 / 数据表）请求失败"""

    def __init__(self, message: str, *, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class AuthError(BackendError):
    """登录 / 注册 / 会话相关失败"""


class SpeechServiceError(AfterthoughtsError):
    """语音转写服务请求失败（临时密钥、流式连接）"""
