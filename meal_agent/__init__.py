"""Meal Agent 顶层包。

该包提供膳食规划聊天助手的核心实现，
包括配置加载、领域模型、Provider 适配、工具目录与执行引擎、
上下文组装、对话回合编排与持久化存储等能力。
"""

from meal_agent.api.service import ChatService, error_response, get_default_service

__all__ = ["ChatService", "error_response", "get_default_service"]
