"""工具执行引擎。

对模型发起的工具调用严格按接收顺序逐个执行：同一轮里后面的调用可能隐式依赖
前面调用的结果（例如先建清单再往里加三样东西），所以不做任何并发。
单个工具失败只会变成一行 "Error executing ..." 文本，绝不会中断同轮的其他调用。
"""

import logging
import time
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence

from meal_agent.domain.exceptions import BusinessError, ToolExecutionError
from meal_agent.domain.kitchen import KitchenCollaborators, format_quantity
from meal_agent.infrastructure.logging.logger import log_event
from .catalog import meal_tool_defs, tool_defs_by_name
from .definitions import ToolDef, ToolInvocation, ToolName
from .validation import validate_tool_input


ToolFunc = Callable[[str, Dict[str, Any]], str]

ACTIONS_HEADER = "✅ Actions completed:"
DEFAULT_GROCERY_UNIT = "item"
_MONTH_ABBR = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def grocery_list_name(today: date) -> str:
    return f"Grocery List - {_MONTH_ABBR[today.month - 1]} {today.day}"


def merge_allergies(current: Sequence[str], incoming: Sequence[str], action: str) -> List[str]:
    """按 action 合并过敏原列表（精确字符串匹配，区分大小写）。

    - replace: 整体覆盖。
    - add: 现有在前、新增在后，去重时保留第一次出现的位置。
    - remove: 去掉 incoming 中出现的所有条目。
    """

    if action == "replace":
        return list(incoming)
    if action == "add":
        merged: List[str] = []
        for allergy in list(current) + list(incoming):
            if allergy not in merged:
                merged.append(allergy)
        return merged
    if action == "remove":
        removed = set(incoming)
        return [a for a in current if a not in removed]
    raise ToolExecutionError(f"Unsupported allergy action: {action}", code="UNSUPPORTED_ACTION")


def compose_reply(model_text: str, invocations: Sequence[ToolInvocation]) -> str:
    """把模型文本与动作日志拼成最终的助手消息正文。"""

    results = [call.result for call in invocations if call.result is not None]
    if not results:
        return model_text
    log_lines = [ACTIONS_HEADER] + [f"• {r}" for r in results]
    action_log = "\n".join(log_lines)
    if model_text:
        return f"{model_text}\n\n{action_log}"
    return action_log


def _error_text(exc: Exception) -> str:
    if isinstance(exc, BusinessError):
        return exc.message
    return str(exc) or exc.__class__.__name__


class KitchenToolExecutor:
    """针对厨房领域协作方执行工具调用。

    构造时校验目录与处理函数一一对应；两者不一致属于代码缺陷，直接报错。
    """

    def __init__(
        self,
        kitchen: KitchenCollaborators,
        tool_defs: Optional[List[ToolDef]] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self._kitchen = kitchen
        self._tool_defs = tool_defs_by_name(tool_defs if tool_defs is not None else meal_tool_defs())
        self._today = today or date.today
        self._handlers: Dict[ToolName, ToolFunc] = {
            ToolName.ADD_MEAL_PLAN: self._add_meal_plan,
            ToolName.ADD_PANTRY_ITEM: self._add_pantry_item,
            ToolName.ADD_GROCERY_ITEM: self._add_grocery_item,
            ToolName.UPDATE_ALLERGIES: self._update_allergies,
        }
        handled = {name.value for name in self._handlers}
        if handled != set(self._tool_defs):
            raise ValueError(
                "Tool catalog and executor are out of sync: "
                f"catalog={sorted(self._tool_defs)}, executor={sorted(handled)}"
            )

    @property
    def tool_defs(self) -> List[ToolDef]:
        return list(self._tool_defs.values())

    def execute(self, call: ToolInvocation, user_id: str) -> ToolInvocation:
        """执行单个调用，并把结果文本写回 call.result。"""

        name = ToolName.parse(call.name)
        if name is None:
            call.result = f"Unknown tool: {call.name}"
            return call
        try:
            validate_tool_input(self._tool_defs[name.value], call.input)
            call.result = self._handlers[name](user_id, call.input)
        except Exception as exc:  # 协作方可能抛出任意异常，这里统一收敛为结果文本
            call.result = f"Error executing {call.name}: {_error_text(exc)}"
        return call

    def execute_all(
        self,
        calls: Sequence[ToolInvocation],
        user_id: str,
        log_ctx: Optional[Dict[str, Any]] = None,
    ) -> List[ToolInvocation]:
        ctx = log_ctx or {}
        executed: List[ToolInvocation] = []
        for call in calls:
            started = time.time()
            log_event(
                logging.INFO,
                "Tool call received",
                ctx,
                tool_name=call.name,
                tool_call_id=call.id,
            )
            self.execute(call, user_id)
            failed = (call.result or "").startswith(("Error executing ", "Unknown tool: "))
            log_event(
                logging.WARNING if failed else logging.INFO,
                "Tool execution failed" if failed else "Tool execution finished",
                ctx,
                tool_name=call.name,
                tool_call_id=call.id,
                elapsed_ms=round((time.time() - started) * 1000, 1),
                result_preview=(call.result or "")[:200],
            )
            executed.append(call)
        return executed

    def _add_meal_plan(self, user_id: str, args: Dict[str, Any]) -> str:
        self._kitchen.create_meal_plan(
            user_id,
            {
                "date": args["date"],
                "meal_type": args["meal_type"],
                "meal_name": args["meal_name"],
                "recipe_id": args.get("recipe_id") or None,
            },
        )
        return f"Successfully added {args['meal_name']} to {args['meal_type']} on {args['date']}"

    def _add_pantry_item(self, user_id: str, args: Dict[str, Any]) -> str:
        self._kitchen.create_pantry_item(
            user_id,
            {
                "name": args["name"],
                "quantity": args["quantity"],
                "unit": args["unit"],
                "category": args.get("category") or None,
                "expiry_date": args.get("expiry_date") or None,
            },
        )
        return f"Successfully added {format_quantity(args['quantity'])} {args['unit']} of {args['name']} to pantry"

    def _add_grocery_item(self, user_id: str, args: Dict[str, Any]) -> str:
        quantity = args.get("quantity") or 1
        unit = args.get("unit") or DEFAULT_GROCERY_UNIT
        lists = self._kitchen.list_grocery_lists(user_id)
        if lists:
            target = lists[0]
        else:
            target = self._kitchen.create_grocery_list(user_id, grocery_list_name(self._today()))
        self._kitchen.add_grocery_list_item(
            user_id,
            target.id,
            {
                "name": args["name"],
                "quantity": quantity,
                "unit": unit,
                "category": args.get("category") or None,
                "is_checked": False,
            },
        )
        shown_unit = unit
        if unit == DEFAULT_GROCERY_UNIT and quantity != 1:
            shown_unit = "items"
        return f"Successfully added {format_quantity(quantity)} {shown_unit} of {args['name']} to grocery list"

    def _update_allergies(self, user_id: str, args: Dict[str, Any]) -> str:
        profile = self._kitchen.get_profile(user_id)
        current = list(profile.allergies) if profile else []
        merged = merge_allergies(current, args["allergies"], args["action"])
        self._kitchen.update_profile(user_id, allergies=merged)
        return f"Successfully updated allergies. Current allergies: {', '.join(merged) or 'None'}"
