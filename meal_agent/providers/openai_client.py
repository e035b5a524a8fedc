"""OpenAI 兼容接口适配器（chat/completions）。

- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>

system prompt 作为第一条 system 消息发送；工具使用 function tool 描述。
"""

import json
from typing import Any, Dict, List

import httpx

from meal_agent.config.settings import settings
from meal_agent.domain.exceptions import ModelConfigurationError, ModelUnavailableError
from meal_agent.domain.models import ChatRequest, ChatResult, ChatUsage
from meal_agent.providers.base import raise_for_status
from meal_agent.providers.registry import OPENAI_CONFIG, ModelConfig
from meal_agent.tools.definitions import ToolDef, ToolInvocation


class OpenAICompatClient:
    """OpenAI 兼容 Provider 客户端实现。"""

    name = "openai"

    def __init__(self, cfg=settings):
        self._settings = cfg

    def chat(self, req: ChatRequest) -> ChatResult:
        api_key = getattr(self._settings, "openai_api_key", None)
        if not api_key:
            raise ModelConfigurationError("OPENAI_API_KEY", provider=self.name)
        model_cfg = OPENAI_CONFIG.model(req.model)
        payload = self._build_payload(req, model_cfg)
        base = getattr(self._settings, "openai_base_url", None) or OPENAI_CONFIG.base_url
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{base.rstrip('/')}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            raise ModelUnavailableError(f"openai request failed: {e}", code="NETWORK_ERROR", provider=self.name)
        raise_for_status(self.name, resp, "OPENAI_API_KEY")
        try:
            data = resp.json()
        except ValueError:
            raise ModelUnavailableError("openai returned a non-JSON response", code="BAD_RESPONSE", provider=self.name)
        try:
            return self._parse_response(data, req)
        except (AttributeError, TypeError, KeyError, IndexError) as e:
            # 结构不符合预期（非对象、content block 不是对象等）
            raise ModelUnavailableError(
                f"openai returned a malformed response: {e}", code="BAD_RESPONSE", provider=self.name
            )

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig) -> Dict[str, Any]:
        msgs: List[Dict[str, Any]] = [{"role": "system", "content": req.system}]
        msgs.extend({"role": m.role, "content": m.content} for m in req.messages)
        payload: Dict[str, Any] = {
            "model": model_cfg.provider_model,
            "messages": msgs,
            "max_tokens": req.max_tokens or model_cfg.max_tokens,
        }
        if req.tools:
            payload["tools"] = [self._serialize_tool(tool) for tool in req.tools]
            payload["tool_choice"] = "auto"
        return payload

    @staticmethod
    def _serialize_tool(tool: ToolDef) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema(),
            },
        }

    def _parse_response(self, data: Dict[str, Any], req: ChatRequest) -> ChatResult:
        choices = data.get("choices") or []
        message = (choices[0].get("message") if choices else None) or {}
        invocations: List[ToolInvocation] = []
        for idx, call in enumerate(message.get("tool_calls") or []):
            func = call.get("function") or {}
            invocations.append(
                ToolInvocation(
                    id=call.get("id") or f"tool_call_{idx}",
                    name=func.get("name") or "",
                    input=self._parse_arguments(func.get("arguments")),
                )
            )
        usage_raw = data.get("usage") or {}
        return ChatResult(
            provider=self.name,
            model=req.model,
            text=message.get("content") or "",
            tool_invocations=invocations,
            stop_reason=choices[0].get("finish_reason") if choices else None,
            usage=ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            ),
            raw=data,
        )

    @staticmethod
    def _parse_arguments(raw: Any) -> Dict[str, Any]:
        """arguments 通常是 JSON 字符串；解析失败时保留原文到 `_raw`。"""

        if isinstance(raw, dict):
            return raw
        if isinstance(raw, str):
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError:
                return {"_raw": raw}
            return parsed if isinstance(parsed, dict) else {"_raw": raw}
        return {}
