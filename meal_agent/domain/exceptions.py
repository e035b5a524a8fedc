"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。

分层约定：
- 回合边界错误（AuthenticationError / ModelUnavailableError / ModelConfigurationError /
  ModelRequestError）会中止本轮对话，并以单条用户可读消息返回给调用方。
- 工具循环内部的错误（ToolExecutionError / ValidationError）只影响单次工具调用，
  会被转换为动作日志中的一行文本。
- PersistenceError 只在后台同步中出现，记录日志后即丢弃。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、provider 等）。
    """

    retryable = False

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)

    @property
    def user_message(self) -> str:
        """展示给终端用户的一句话说明。"""

        return self.message


class AuthenticationError(BusinessError):
    """调用方没有有效的用户会话。"""

    def __init__(self, message: str = "Unauthorized", code: str = "UNAUTHORIZED", http_status: int = 401, **extra):
        super().__init__(code=code, message=message, http_status=http_status, **extra)


class ModelConfigurationError(AuthenticationError):
    """模型服务的凭据缺失或无效，需要运维介入，不可重试。

    setting 为缺失的配置项名称（如 ANTHROPIC_API_KEY），消息中只出现名称，
    永远不包含凭据本身。
    """

    def __init__(self, setting: str, message: Optional[str] = None, **extra):
        self.setting = setting
        super().__init__(
            message=message or f"{setting} is missing or invalid",
            code="MODEL_CONFIGURATION",
            http_status=401,
            **extra,
        )

    @property
    def user_message(self) -> str:
        return f"The assistant is not configured correctly. Please check {self.setting}."


class ValidationError(BusinessError):
    """参数或配置校验失败。"""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR", http_status: int = 400, **extra):
        super().__init__(code=code, message=message, http_status=http_status, **extra)


class ModelUnavailableError(BusinessError):
    """模型服务暂时不可用（网络错误、超时、限流、5xx）。用户重发即可重试。"""

    retryable = True

    def __init__(self, message: str, code: str = "MODEL_UNAVAILABLE", http_status: int = 503, **extra):
        super().__init__(code=code, message=message, http_status=http_status, **extra)

    @property
    def user_message(self) -> str:
        return "The assistant is temporarily unavailable. Please try sending your message again."


class ModelRequestError(BusinessError):
    """模型服务拒绝了请求本身（400 等），重试同样的请求没有意义。"""

    def __init__(self, message: str, code: str = "MODEL_BAD_REQUEST", http_status: int = 400, **extra):
        super().__init__(code=code, message=message, http_status=http_status, **extra)

    @property
    def user_message(self) -> str:
        return f"Bad request: {self.message}"


class ToolExecutionError(BusinessError):
    """单次工具调用失败，永远不会升级为回合级错误。"""

    def __init__(self, message: str, code: str = "TOOL_EXECUTION_ERROR", http_status: int = 400, **extra):
        super().__init__(code=code, message=message, http_status=http_status, **extra)


class PersistenceError(BusinessError):
    """存储读写失败。"""

    def __init__(self, message: str, code: str = "STORE_WRITE_ERROR", http_status: int = 500, **extra):
        super().__init__(code=code, message=message, http_status=http_status, **extra)


class NotFoundError(BusinessError):
    """请求的记录不存在（或不属于当前用户）。"""

    def __init__(self, message: str, code: str = "NOT_FOUND", http_status: int = 404, **extra):
        super().__init__(code=code, message=message, http_status=http_status, **extra)


class TurnInProgressError(BusinessError):
    """同一会话上已有一轮对话在处理中。"""

    def __init__(self, conversation_key: str, **extra):
        super().__init__(
            code="TURN_IN_PROGRESS",
            message=f"A message is already being processed for conversation {conversation_key}",
            http_status=409,
            **extra,
        )

    @property
    def user_message(self) -> str:
        return "Please wait for the current reply before sending another message."
