"""LangGraph construction and node implementations for a single chat turn."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph

from meal_agent.agents.model_adapter import ModelInvocationAdapter
from meal_agent.flows.state import TurnState
from meal_agent.infrastructure.logging.logger import log_event
from meal_agent.tools.executor import KitchenToolExecutor, compose_reply

FALLBACK_REPLY = "Done!"

NodeHook = Callable[[str, TurnState], None]


def model_node(state: TurnState, adapter: ModelInvocationAdapter, tool_defs) -> TurnState:
    reply = adapter.invoke(
        state["history"],
        state["system_prompt"],
        tool_defs,
        log_ctx=state.get("log_ctx"),
    )
    state["reply"] = reply
    state["tool_invocations"] = list(reply.tool_invocations)
    return state


def tools_node(state: TurnState, executor: KitchenToolExecutor) -> TurnState:
    calls = state.get("tool_invocations") or []
    if calls:
        state["tool_invocations"] = executor.execute_all(calls, state["user_id"], state.get("log_ctx"))
    return state


def compose_node(state: TurnState) -> TurnState:
    reply = state.get("reply")
    text = compose_reply(reply.text if reply else "", state.get("tool_invocations") or [])
    if not text.strip():
        log_event(logging.INFO, "Empty model reply, using fallback", state.get("log_ctx") or {})
        text = FALLBACK_REPLY
    state["final_text"] = text
    return state


def _tracked(name: str, fn, on_enter: Optional[NodeHook]):
    def run(state: TurnState) -> TurnState:
        if on_enter:
            on_enter(name, state)
        return fn(state)

    return run


def build_turn_graph(
    adapter: ModelInvocationAdapter,
    executor: KitchenToolExecutor,
    on_enter: Optional[NodeHook] = None,
) -> CompiledStateGraph:
    """model -> tools -> compose，线性执行；节点内抛出的异常原样传出 invoke。"""

    tool_defs = executor.tool_defs
    graph = StateGraph(TurnState)
    graph.add_node("model", _tracked("model", lambda s: model_node(s, adapter, tool_defs), on_enter))
    graph.add_node("tools", _tracked("tools", lambda s: tools_node(s, executor), on_enter))
    graph.add_node("compose", _tracked("compose", compose_node, on_enter))
    graph.set_entry_point("model")
    graph.add_edge("model", "tools")
    graph.add_edge("tools", "compose")
    graph.add_edge("compose", END)
    return graph.compile()
