"""Provider 抽象接口。

上层的模型适配层不直接依赖具体厂商的 HTTP 接口，而是依赖此协议：

- 每个厂商实现一个 ProviderClient（如 AnthropicClient）。
- 负责：将 ChatRequest 转成具体 API 请求，并把响应 JSON 解析为 ChatResult。
- 负责：把 HTTP 状态码映射为统一的回合级异常。
"""

from typing import Protocol

import httpx

from meal_agent.domain.exceptions import (
    ModelConfigurationError,
    ModelRequestError,
    ModelUnavailableError,
)
from meal_agent.domain.models import ChatRequest, ChatResult


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志/统计。
    - chat(req): 执行一次非流式对话调用，返回统一的 ChatResult。
    """

    name: str

    def chat(self, req: ChatRequest) -> ChatResult:
        ...


def error_detail(resp: httpx.Response) -> str:
    """尽量取出厂商返回的 error.message，取不到时退回原始文本。"""

    try:
        data = resp.json()
    except ValueError:
        return resp.text
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
    return resp.text


def raise_for_status(provider: str, resp: httpx.Response, key_setting: str) -> None:
    """把 HTTP 错误状态映射为统一异常。

    - 401/403：凭据无效，运维问题，不可重试。
    - 429、5xx（含 529 overloaded）：暂时不可用，用户可重试。
    - 其他 4xx：请求本身被拒绝。
    """

    status = resp.status_code
    if status < 400:
        return
    detail = error_detail(resp)
    if status in (401, 403):
        raise ModelConfigurationError(key_setting, provider=provider, upstream_status=status)
    if status == 429:
        raise ModelUnavailableError(f"{provider} rate limit", code="RATE_LIMIT", provider=provider, upstream_status=status)
    if status >= 500:
        raise ModelUnavailableError(
            f"{provider} service error: {detail}", provider=provider, upstream_status=status
        )
    raise ModelRequestError(detail, provider=provider, upstream_status=status)
