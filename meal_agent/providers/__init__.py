"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口与状态码映射 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供各厂商的具体实现 (anthropic_client、openai_client)。
"""

from typing import Dict, Optional, Type

from meal_agent.config.settings import settings
from meal_agent.providers.base import ProviderClient
from meal_agent.providers.anthropic_client import AnthropicClient
from meal_agent.providers.openai_client import OpenAICompatClient
from meal_agent.providers.registry import get_provider_config


_CLIENTS: Dict[str, Type] = {
    "anthropic": AnthropicClient,
    "openai": OpenAICompatClient,
}


def create_provider(name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。

    名称先经 registry 解析（不区分大小写），未登记的名称抛出 KeyError。
    """

    provider_cfg = get_provider_config(name or settings.default_provider or "anthropic")
    return _CLIENTS[provider_cfg.name](settings)
