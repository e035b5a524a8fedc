"""系统提示词组装（上下文组装器）。

根据用户的领域快照（过敏原、收藏菜谱、储藏室、近期餐食、未购买的购物项）
渲染出一段自然语言 system prompt。对同一份快照输出逐字节一致：
不含时间戳、不含随机内容，语言环境也不会影响日期格式。
"""

from datetime import date
from typing import Callable, List, Optional

from meal_agent.domain.kitchen import ContextBundle, KitchenCollaborators, format_quantity


MAX_FAVORITE_RECIPES = 5
MAX_PANTRY_ITEMS = 15
MAX_UPCOMING_MEALS = 10
MAX_GROCERY_ITEMS = 15

_WEEKDAY_ABBR = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTH_ABBR = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

INTRO = (
    "You are a helpful cooking and meal planning assistant with the ability to take actions. "
    "Here's the context about the user:"
)

CAPABILITIES = "\n".join([
    "You can help with:",
    "- Meal suggestions based on what's in the pantry",
    "- Recipe recommendations",
    "- Cooking tips and substitutions",
    "- Nutritional information",
    "- Meal planning and grocery shopping advice",
    "",
    "IMPORTANT: You have access to tools that allow you to:",
    "- Add meals to the user's meal plan",
    "- Add items to the user's pantry (when they buy/have ingredients)",
    "- Add items to the user's grocery list (when they need to buy something)",
    "- Update the user's allergy information",
    "",
    "Be smart about context:",
    "- When suggesting recipes, check if ingredients are in the pantry or grocery list",
    "- If ingredients are missing, offer to add them to the grocery list",
    "- Consider upcoming meals when making suggestions",
    "- When user says \"I bought X\", add to pantry. When they say \"I need X\", add to grocery list",
    "",
    "Be friendly, concise, and helpful. Always remember the user's allergies.",
])


def _format_meal_date(raw: str) -> str:
    try:
        d = date.fromisoformat(raw)
    except ValueError:
        return raw
    return f"{_WEEKDAY_ABBR[d.weekday()]}, {_MONTH_ABBR[d.month - 1]} {d.day}"


def _section(title: str, lines: List[str]) -> str:
    return "\n".join([title] + [f"- {line}" for line in lines])


def build_context_prompt(bundle: ContextBundle) -> str:
    """把快照渲染成 system prompt。各段只在源列表非空时输出，超出上限静默截断。"""

    sections: List[str] = []

    allergies = list(bundle.profile.allergies) if bundle.profile else []
    if allergies:
        # 过敏原必须是模型读到的第一条信息
        sections.append(
            f"IMPORTANT: The user has the following allergies: {', '.join(allergies)}. "
            "Always consider these when suggesting recipes or ingredients."
        )

    sections.append(INTRO)

    favorites = [r for r in bundle.recipes if r.is_favorite][:MAX_FAVORITE_RECIPES]
    if favorites:
        sections.append(_section("User's favorite recipes:", [r.title for r in favorites]))

    pantry = bundle.pantry_items[:MAX_PANTRY_ITEMS]
    if pantry:
        sections.append(_section(
            "Items currently in pantry:",
            [f"{item.name} ({format_quantity(item.quantity)} {item.unit})" for item in pantry],
        ))

    meals = sorted(bundle.meal_plans, key=lambda m: m.date)[:MAX_UPCOMING_MEALS]
    if meals:
        sections.append(_section(
            "Upcoming meals planned:",
            [
                f"{_format_meal_date(meal.date)} {meal.meal_type}: {meal.meal_name or 'Unnamed meal'}"
                for meal in meals
            ],
        ))

    unchecked = [item for item in bundle.grocery_items if not item.is_checked][:MAX_GROCERY_ITEMS]
    if unchecked:
        sections.append(_section(
            "Items on grocery list (need to buy):",
            [f"{item.name} ({format_quantity(item.quantity)} {item.unit})" for item in unchecked],
        ))

    sections.append(CAPABILITIES)
    return "\n\n".join(sections)


class ContextAssembler:
    """每轮对话读取一份新的领域快照并渲染成 system prompt。"""

    def __init__(self, kitchen: KitchenCollaborators, today: Optional[Callable[[], date]] = None):
        self._kitchen = kitchen
        self._today = today or date.today

    def snapshot(self, user_id: str) -> ContextBundle:
        return self._kitchen.fetch_user_context(user_id, self._today())

    def build_system_prompt(self, user_id: str) -> str:
        return build_context_prompt(self.snapshot(user_id))
