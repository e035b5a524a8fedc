"""模型调用适配层。

把会话历史、system prompt 与工具目录组装成一次 ChatRequest，
每轮只调用一次 Provider，不做任何重试。错误原样向上抛出：

- ModelConfigurationError（凭据缺失/无效）
- ModelUnavailableError（网络、超时、限流、5xx）
- ModelRequestError（请求被拒绝）
"""

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from meal_agent.config.settings import settings
from meal_agent.domain.models import ChatMessage, ChatRequest, Message, ModelReply
from meal_agent.infrastructure.logging.logger import log_event
from meal_agent.providers.base import ProviderClient
from meal_agent.tools.catalog import CATALOG_VERSION
from meal_agent.tools.definitions import ToolDef


class ModelInvocationAdapter:
    def __init__(
        self,
        provider_client: ProviderClient,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ):
        self._provider_client = provider_client
        self._model = model or settings.default_model
        self._max_tokens = max_tokens or settings.max_output_tokens

    @property
    def provider_name(self) -> str:
        return self._provider_client.name

    @staticmethod
    def to_chat_messages(history: Sequence[Message]) -> List[ChatMessage]:
        """只保留 role + content；工具调用记录不回传给模型。"""

        return [ChatMessage(role=m.role, content=m.content) for m in history]

    def invoke(
        self,
        history: Sequence[Message],
        system_prompt: str,
        tools: Sequence[ToolDef],
        log_ctx: Optional[Dict[str, Any]] = None,
    ) -> ModelReply:
        ctx = log_ctx or {}
        req = ChatRequest(
            provider=self._provider_client.name,
            model=self._model,
            system=system_prompt,
            messages=self.to_chat_messages(history),
            max_tokens=self._max_tokens,
            tools=list(tools) or None,
        )
        started = time.time()
        log_event(
            logging.INFO,
            "Calling provider",
            ctx,
            provider=req.provider,
            model=req.model,
            message_count=len(req.messages),
            tool_count=len(tools),
            catalog_version=CATALOG_VERSION,
        )
        try:
            result = self._provider_client.chat(req)
        except Exception as e:
            log_event(
                logging.ERROR,
                "Provider call failed",
                ctx,
                provider=req.provider,
                error_type=type(e).__name__,
                error=str(e),
                elapsed_ms=round((time.time() - started) * 1000, 1),
            )
            raise
        usage = result.usage
        log_event(
            logging.INFO,
            "Provider call finished",
            ctx,
            provider=result.provider,
            stop_reason=result.stop_reason,
            tool_calls=len(result.tool_invocations),
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
            elapsed_ms=round((time.time() - started) * 1000, 1),
        )
        return ModelReply(text=result.text, tool_invocations=list(result.tool_invocations), usage=usage)
