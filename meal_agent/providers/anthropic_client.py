"""Anthropic Messages API 适配器。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 Messages API 的请求格式（system 独立字段、tools 使用 input_schema）。
3. 调用 HTTP 接口并把网络/状态码错误映射为统一异常。
4. 将响应的 content blocks 解析为 ChatResult：
   text block 按顺序拼接，tool_use block 转为 ToolInvocation。
"""

from typing import Any, Dict, List

import httpx

from meal_agent.config.settings import settings
from meal_agent.domain.exceptions import ModelConfigurationError, ModelUnavailableError
from meal_agent.domain.models import ChatRequest, ChatResult, ChatUsage
from meal_agent.providers.base import raise_for_status
from meal_agent.providers.registry import ANTHROPIC_CONFIG, ModelConfig
from meal_agent.tools.definitions import ToolDef, ToolInvocation


class AnthropicClient:
    """Anthropic 提供方客户端实现。"""

    name = "anthropic"

    def __init__(self, cfg=settings):
        self._settings = cfg

    def chat(self, req: ChatRequest) -> ChatResult:
        api_key = getattr(self._settings, "anthropic_api_key", None)
        if not api_key:
            raise ModelConfigurationError("ANTHROPIC_API_KEY", provider=self.name)
        model_cfg = ANTHROPIC_CONFIG.model(req.model)
        payload = self._build_payload(req, model_cfg)
        base = getattr(self._settings, "anthropic_base_url", None) or ANTHROPIC_CONFIG.base_url
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{base.rstrip('/')}/messages",
                    json=payload,
                    headers={
                        "x-api-key": api_key,
                        "anthropic-version": self._settings.anthropic_version,
                        "content-type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise ModelUnavailableError(f"anthropic request failed: {e}", code="NETWORK_ERROR", provider=self.name)
        raise_for_status(self.name, resp, "ANTHROPIC_API_KEY")
        try:
            data = resp.json()
        except ValueError:
            raise ModelUnavailableError("anthropic returned a non-JSON response", code="BAD_RESPONSE", provider=self.name)
        try:
            return self._parse_response(data, req)
        except (AttributeError, TypeError, KeyError, IndexError) as e:
            # 结构不符合预期（非对象、content block 不是对象等）
            raise ModelUnavailableError(
                f"anthropic returned a malformed response: {e}", code="BAD_RESPONSE", provider=self.name
            )

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model_cfg.provider_model,
            "max_tokens": req.max_tokens or model_cfg.max_tokens,
            "system": req.system,
            "messages": [{"role": m.role, "content": m.content} for m in req.messages],
        }
        if req.tools:
            payload["tools"] = [self._serialize_tool(tool) for tool in req.tools]
        return payload

    @staticmethod
    def _serialize_tool(tool: ToolDef) -> Dict[str, Any]:
        return {
            "name": tool.name,
            "description": tool.description,
            "input_schema": tool.input_schema(),
        }

    def _parse_response(self, data: Dict[str, Any], req: ChatRequest) -> ChatResult:
        texts: List[str] = []
        invocations: List[ToolInvocation] = []
        for idx, block in enumerate(data.get("content") or []):
            kind = block.get("type")
            if kind == "text":
                texts.append(block.get("text") or "")
            elif kind == "tool_use":
                raw_input = block.get("input")
                invocations.append(
                    ToolInvocation(
                        id=block.get("id") or f"tool_use_{idx}",
                        name=block.get("name") or "",
                        input=raw_input if isinstance(raw_input, dict) else {},
                    )
                )
        usage_raw = data.get("usage") or {}
        prompt_tokens = usage_raw.get("input_tokens", 0)
        completion_tokens = usage_raw.get("output_tokens", 0)
        return ChatResult(
            provider=self.name,
            model=req.model,
            text="".join(texts),
            tool_invocations=invocations,
            stop_reason=data.get("stop_reason"),
            usage=ChatUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            raw=data,
        )
