"""State definition for the per-turn LangGraph pipeline."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, TypedDict

from meal_agent.domain.models import Message, ModelReply
from meal_agent.tools.definitions import ToolInvocation


class TurnState(TypedDict, total=False):
    """State shared across the model -> tools -> compose nodes."""

    conversation_id: str
    user_id: str
    history: List[Message]
    system_prompt: str
    reply: Optional[ModelReply]
    tool_invocations: List[ToolInvocation]
    final_text: str
    log_ctx: Dict[str, Any]
