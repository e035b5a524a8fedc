"""对话回合编排器。

一轮对话的状态机：idle -> awaiting_model_reply -> executing_tools -> composing_reply -> idle。

- 用户消息在调用模型之前写入会话，调用失败时依然保留。
- 任意一步抛出异常都会立即回到 idle，并把异常交给调用方；不存在半完成的回合。
- 同一会话同一时间只允许一轮对话在处理中。
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from meal_agent.agents.model_adapter import ModelInvocationAdapter
from meal_agent.domain.conversation import Conversation
from meal_agent.domain.exceptions import AuthenticationError, TurnInProgressError, ValidationError
from meal_agent.domain.models import ChatUsage, Message
from meal_agent.flows.graph import build_turn_graph
from meal_agent.flows.state import TurnState
from meal_agent.infrastructure.logging.logger import log_event
from meal_agent.infrastructure.storage.conversation_store import ConversationStore
from meal_agent.prompts import ContextAssembler
from meal_agent.tools.executor import KitchenToolExecutor


class TurnPhase(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL_REPLY = "awaiting_model_reply"
    EXECUTING_TOOLS = "executing_tools"
    COMPOSING_REPLY = "composing_reply"


_NODE_PHASES = {
    "model": TurnPhase.AWAITING_MODEL_REPLY,
    "tools": TurnPhase.EXECUTING_TOOLS,
    "compose": TurnPhase.COMPOSING_REPLY,
}


@dataclass
class TurnResult:
    conversation: Conversation
    user_message: Message
    assistant_message: Message
    usage: Optional[ChatUsage] = None


class Orchestrator:
    def __init__(
        self,
        context_assembler: ContextAssembler,
        model_adapter: ModelInvocationAdapter,
        tool_executor: KitchenToolExecutor,
    ):
        self._context = context_assembler
        self._graph = build_turn_graph(model_adapter, tool_executor, on_enter=self._on_node_enter)
        self._guard = threading.Lock()
        self._phases: Dict[str, TurnPhase] = {}

    def phase(self, conversation_id: str) -> TurnPhase:
        with self._guard:
            return self._phases.get(conversation_id, TurnPhase.IDLE)

    def run_turn(self, store: ConversationStore, user_input: str) -> TurnResult:
        """处理一条用户消息，返回追加到会话中的用户消息与助手消息。"""

        if not store.user_id:
            raise AuthenticationError()
        if not user_input or not user_input.strip():
            raise ValidationError("Message cannot be empty", code="EMPTY_MESSAGE")

        key = store.conversation_id
        self._begin(key)
        started = time.time()
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "conversation_id": key,
            "user_id": store.user_id,
        }
        try:
            # 回合结束前活跃会话不能被切换或清空
            with store.turn():
                user_msg = store.append(store.new_message("user", user_input))
                log_event(logging.INFO, "Stored user message", log_ctx, message_id=user_msg.id)

                system_prompt = self._context.build_system_prompt(store.user_id)
                state: TurnState = {
                    "conversation_id": key,
                    "user_id": store.user_id,
                    "history": store.messages,
                    "system_prompt": system_prompt,
                    "tool_invocations": [],
                    "log_ctx": log_ctx,
                }
                final_state = self._graph.invoke(state)

                assistant_msg = store.append(
                    store.new_message(
                        "assistant",
                        final_state["final_text"],
                        final_state.get("tool_invocations") or [],
                    )
                )
                conversation = store.snapshot()
        except Exception as e:
            log_event(
                logging.ERROR,
                "Turn failed",
                log_ctx,
                error_type=type(e).__name__,
                error=str(e),
                elapsed_seconds=round(time.time() - started, 2),
            )
            raise
        finally:
            self._end(key)

        reply = final_state.get("reply")
        log_event(
            logging.INFO,
            "Completed turn",
            log_ctx,
            user_message_id=user_msg.id,
            assistant_message_id=assistant_msg.id,
            tool_calls=len(assistant_msg.tool_invocations),
            elapsed_seconds=round(time.time() - started, 2),
        )
        return TurnResult(
            conversation=conversation,
            user_message=user_msg,
            assistant_message=assistant_msg,
            usage=reply.usage if reply else None,
        )

    # ---- 内部 ----

    def _begin(self, key: str) -> None:
        with self._guard:
            if self._phases.get(key, TurnPhase.IDLE) is not TurnPhase.IDLE:
                raise TurnInProgressError(key)
            self._phases[key] = TurnPhase.AWAITING_MODEL_REPLY

    def _end(self, key: str) -> None:
        with self._guard:
            self._phases.pop(key, None)

    def _on_node_enter(self, node: str, state: TurnState) -> None:
        phase = _NODE_PHASES[node]
        with self._guard:
            self._phases[state["conversation_id"]] = phase
        log_event(logging.INFO, "Turn phase changed", state.get("log_ctx") or {}, phase=phase.value)
