"""厨房领域记录与外部协作方协议。

菜谱、储藏室、购物清单、餐食计划与用户资料的持久化不属于本包的核心职责，
这里只定义数据形状与调用契约；`infrastructure.storage.kitchen_store`
提供了一个基于 JSON 文件的参考实现，供默认装配与测试使用。
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Literal, Optional, Protocol, Tuple


MealType = Literal["breakfast", "lunch", "dinner", "snack"]
MEAL_TYPES: Tuple[str, ...] = ("breakfast", "lunch", "dinner", "snack")

# 上下文快照中餐食计划的滑动窗口：[today - 7, today + 14]
MEAL_WINDOW_PAST_DAYS = 7
MEAL_WINDOW_FUTURE_DAYS = 14
# 上下文快照只读取最近创建的若干个购物清单
RECENT_GROCERY_LISTS = 5


def meal_plan_window(today: date) -> Tuple[date, date]:
    return today - timedelta(days=MEAL_WINDOW_PAST_DAYS), today + timedelta(days=MEAL_WINDOW_FUTURE_DAYS)


def format_quantity(value: Any) -> str:
    """整数值不带小数点：2.0 -> "2"，1.5 -> "1.5"。"""

    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@dataclass
class Profile:
    id: str
    email: str = ""
    full_name: Optional[str] = None
    allergies: List[str] = field(default_factory=list)


@dataclass
class Recipe:
    id: str
    user_id: str
    title: str
    ingredients: List[Any] = field(default_factory=list)
    instructions: str = ""
    tags: List[str] = field(default_factory=list)
    is_favorite: bool = False
    created_at: str = ""


@dataclass
class PantryItem:
    id: str
    user_id: str
    name: str
    quantity: float
    unit: str
    category: Optional[str] = None
    expiry_date: Optional[str] = None
    created_at: str = ""


@dataclass
class MealPlan:
    id: str
    user_id: str
    date: str  # YYYY-MM-DD
    meal_type: str
    meal_name: Optional[str] = None
    recipe_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: str = ""


@dataclass
class GroceryList:
    id: str
    user_id: str
    name: str
    created_at: str = ""


@dataclass
class GroceryItem:
    id: str
    list_id: str
    name: str
    quantity: float
    unit: str
    category: Optional[str] = None
    is_checked: bool = False
    recipe_id: Optional[str] = None
    created_at: str = ""


@dataclass
class ContextBundle:
    """某一时刻的用户领域状态只读快照，每轮对话重新读取。"""

    profile: Optional[Profile] = None
    recipes: List[Recipe] = field(default_factory=list)
    pantry_items: List[PantryItem] = field(default_factory=list)
    meal_plans: List[MealPlan] = field(default_factory=list)
    grocery_items: List[GroceryItem] = field(default_factory=list)


class KitchenCollaborators(Protocol):
    """工具执行与上下文组装所依赖的领域 CRUD 契约。

    所有方法都以已认证用户的 id 作为第一个参数；失败时直接抛出异常，
    由调用方（执行引擎）负责兜底。
    """

    def fetch_user_context(self, user_id: str, today: date) -> ContextBundle:
        ...

    def create_meal_plan(self, user_id: str, data: Dict[str, Any]) -> MealPlan:
        ...

    def delete_meal_plan(self, user_id: str, meal_plan_id: str) -> None:
        ...

    def create_pantry_item(self, user_id: str, data: Dict[str, Any]) -> PantryItem:
        ...

    def list_grocery_lists(self, user_id: str) -> List[GroceryList]:
        """按创建时间倒序返回（最新的在最前）。"""
        ...

    def create_grocery_list(self, user_id: str, name: str) -> GroceryList:
        ...

    def add_grocery_list_item(self, user_id: str, list_id: str, data: Dict[str, Any]) -> GroceryItem:
        ...

    def get_profile(self, user_id: str) -> Optional[Profile]:
        ...

    def update_profile(
        self,
        user_id: str,
        allergies: Optional[List[str]] = None,
        full_name: Optional[str] = None,
    ) -> Profile:
        ...
