"""固定的工具目录。

目录在构造 prompt 与执行阶段之间原样共享：模型能看到的能力面
与执行引擎能执行的能力面必须完全一致（见 executor.KitchenToolExecutor）。
"""

from typing import Dict, List

from .definitions import ToolDef, ToolName, ToolParam


CATALOG_VERSION = "2025-11-01"

_DATE_SCHEMA = {"type": "string", "format": "date"}


def meal_tool_defs() -> List[ToolDef]:
    return [
        ToolDef(
            name=ToolName.ADD_MEAL_PLAN.value,
            description=(
                "Add a meal to the meal plan for a specific date and meal type. "
                "Use this when the user wants to plan a meal for a specific day."
            ),
            params={
                "date": ToolParam(
                    name="date",
                    description="Date in YYYY-MM-DD format (e.g., 2025-11-23)",
                    required=True,
                    schema=_DATE_SCHEMA,
                ),
                "meal_type": ToolParam(
                    name="meal_type",
                    description="Type of meal",
                    required=True,
                    schema={"type": "string", "enum": ["breakfast", "lunch", "dinner", "snack"]},
                ),
                "meal_name": ToolParam(
                    name="meal_name",
                    description="Name of the meal or dish",
                    required=True,
                    schema={"type": "string", "minLength": 1},
                ),
                "recipe_id": ToolParam(
                    name="recipe_id",
                    description="Optional recipe ID if linking to an existing recipe",
                    required=False,
                    schema={"type": "string"},
                ),
            },
        ),
        ToolDef(
            name=ToolName.ADD_PANTRY_ITEM.value,
            description=(
                "Add an item to the pantry inventory. "
                "Use this when the user mentions they have or bought ingredients."
            ),
            params={
                "name": ToolParam(
                    name="name",
                    description="Name of the pantry item",
                    required=True,
                    schema={"type": "string", "minLength": 1},
                ),
                "quantity": ToolParam(
                    name="quantity",
                    description="Quantity of the item",
                    required=True,
                    schema={"type": "number", "exclusiveMinimum": 0},
                ),
                "unit": ToolParam(
                    name="unit",
                    description="Unit of measurement (e.g., cups, grams, pieces, lbs)",
                    required=True,
                    schema={"type": "string", "minLength": 1},
                ),
                "category": ToolParam(
                    name="category",
                    description="Optional category (e.g., dairy, meat, vegetables, grains)",
                    required=False,
                    schema={"type": "string"},
                ),
                "expiry_date": ToolParam(
                    name="expiry_date",
                    description="Optional expiry date in YYYY-MM-DD format",
                    required=False,
                    schema=_DATE_SCHEMA,
                ),
            },
        ),
        ToolDef(
            name=ToolName.ADD_GROCERY_ITEM.value,
            description=(
                "Add an item to the grocery list. Use this when the user mentions they need to buy "
                "something. If no grocery list exists, one will be created."
            ),
            params={
                "name": ToolParam(
                    name="name",
                    description="Name of the grocery item",
                    required=True,
                    schema={"type": "string", "minLength": 1},
                ),
                "quantity": ToolParam(
                    name="quantity",
                    description="Quantity of the item (defaults to 1)",
                    required=False,
                    schema={"type": "number", "exclusiveMinimum": 0},
                ),
                "unit": ToolParam(
                    name="unit",
                    description="Unit of measurement (e.g., cups, grams, pieces, lbs); defaults to item",
                    required=False,
                    schema={"type": "string"},
                ),
                "category": ToolParam(
                    name="category",
                    description="Optional category (e.g., dairy, meat, vegetables, grains)",
                    required=False,
                    schema={"type": "string"},
                ),
            },
        ),
        ToolDef(
            name=ToolName.UPDATE_ALLERGIES.value,
            description=(
                "Update the user's allergy information. Use this when the user mentions new "
                "allergies or wants to modify their allergy list."
            ),
            params={
                "allergies": ToolParam(
                    name="allergies",
                    description="Array of allergy names",
                    required=True,
                    schema={"type": "array", "items": {"type": "string"}},
                ),
                "action": ToolParam(
                    name="action",
                    description="Whether to replace all allergies, add new ones, or remove specific ones",
                    required=True,
                    schema={"type": "string", "enum": ["replace", "add", "remove"]},
                ),
            },
        ),
    ]


def tool_defs_by_name(tool_defs: List[ToolDef]) -> Dict[str, ToolDef]:
    return {tool.name: tool for tool in tool_defs}
