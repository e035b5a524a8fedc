from datetime import date

import pytest

from meal_agent.domain.exceptions import ToolExecutionError, ValidationError
from meal_agent.infrastructure.storage.kitchen_store import JsonKitchenStore
from meal_agent.tools.catalog import meal_tool_defs, tool_defs_by_name
from meal_agent.tools.definitions import ToolDef, ToolInvocation, ToolName
from meal_agent.tools.executor import (
    KitchenToolExecutor,
    compose_reply,
    grocery_list_name,
    merge_allergies,
)
from meal_agent.tools.validation import validate_tool_input

TODAY = date(2025, 1, 5)


def _executor(tmp_path, kitchen=None):
    kitchen = kitchen or JsonKitchenStore(root=tmp_path)
    return KitchenToolExecutor(kitchen, today=lambda: TODAY), kitchen


def test_catalog_matches_tool_names():
    defs = meal_tool_defs()
    assert [d.name for d in defs] == [n.value for n in ToolName]
    schema = tool_defs_by_name(defs)["add_pantry_item"].input_schema()
    assert schema["type"] == "object"
    assert schema["required"] == ["name", "quantity", "unit"]
    assert schema["properties"]["quantity"]["type"] == "number"
    assert schema["properties"]["name"]["description"] == "Name of the pantry item"


def test_executor_rejects_catalog_mismatch(tmp_path):
    partial = [d for d in meal_tool_defs() if d.name != "update_allergies"]
    with pytest.raises(ValueError):
        KitchenToolExecutor(JsonKitchenStore(root=tmp_path), tool_defs=partial)


def test_validate_tool_input_reports_first_problem():
    tool = tool_defs_by_name(meal_tool_defs())["add_meal_plan"]
    validate_tool_input(tool, {"date": "2025-01-06", "meal_type": "dinner", "meal_name": "Tacos"})
    with pytest.raises(ValidationError) as exc:
        validate_tool_input(tool, {"date": "2025-01-06", "meal_type": "brunch", "meal_name": "Tacos"})
    assert exc.value.message.startswith("Invalid input: meal_type:")
    with pytest.raises(ValidationError) as exc:
        validate_tool_input(tool, {"date": "2025-01-06", "meal_type": "dinner"})
    assert "meal_name" in exc.value.message


def test_merge_allergies_actions():
    assert merge_allergies(["peanuts"], ["shellfish"], "replace") == ["shellfish"]
    assert merge_allergies(["peanuts"], ["shellfish", "peanuts"], "add") == ["peanuts", "shellfish"]
    assert merge_allergies(["Peanuts"], ["peanuts"], "add") == ["Peanuts", "peanuts"]
    assert merge_allergies(["peanuts", "shellfish"], ["peanuts"], "remove") == ["shellfish"]
    assert merge_allergies([], ["peanuts"], "remove") == []
    with pytest.raises(ToolExecutionError) as exc:
        merge_allergies([], [], "toggle")
    assert exc.value.code == "UNSUPPORTED_ACTION"


def test_compose_reply():
    done = ToolInvocation(id="1", name="add_pantry_item", input={}, result="Successfully added 2 lbs of chicken to pantry")
    assert compose_reply("Great!", []) == "Great!"
    assert compose_reply("Great!", [done]) == (
        "Great!\n\n✅ Actions completed:\n• Successfully added 2 lbs of chicken to pantry"
    )
    assert compose_reply("", [done]) == "✅ Actions completed:\n• Successfully added 2 lbs of chicken to pantry"


def test_grocery_list_name():
    assert grocery_list_name(TODAY) == "Grocery List - Jan 5"


def test_add_pantry_item(tmp_path):
    executor, kitchen = _executor(tmp_path)
    call = ToolInvocation(id="t1", name="add_pantry_item", input={"name": "chicken", "quantity": 2, "unit": "lbs"})
    executor.execute(call, "u1")
    assert call.result == "Successfully added 2 lbs of chicken to pantry"
    items = kitchen.list_pantry_items("u1")
    assert [(i.name, i.quantity, i.unit) for i in items] == [("chicken", 2, "lbs")]


def test_add_grocery_items_creates_one_list(tmp_path):
    executor, kitchen = _executor(tmp_path)
    calls = [
        ToolInvocation(id="a", name="add_grocery_item", input={"name": "milk", "quantity": 1, "unit": "gallon"}),
        ToolInvocation(id="b", name="add_grocery_item", input={"name": "eggs", "quantity": 12}),
    ]
    executor.execute_all(calls, "u1")
    assert calls[0].result == "Successfully added 1 gallon of milk to grocery list"
    assert calls[1].result == "Successfully added 12 items of eggs to grocery list"

    lists = kitchen.list_grocery_lists("u1")
    assert [lst.name for lst in lists] == ["Grocery List - Jan 5"]
    items = kitchen.list_grocery_list_items("u1", lists[0].id)
    assert [(i.name, i.quantity, i.unit, i.is_checked) for i in items] == [
        ("milk", 1, "gallon", False),
        ("eggs", 12, "item", False),
    ]


def test_add_grocery_item_uses_newest_list(tmp_path):
    executor, kitchen = _executor(tmp_path)
    kitchen.create_grocery_list("u1", "Old")
    newest = kitchen.create_grocery_list("u1", "Weekend")
    call = ToolInvocation(id="a", name="add_grocery_item", input={"name": "basil"})
    executor.execute(call, "u1")
    assert call.result == "Successfully added 1 item of basil to grocery list"
    assert [i.name for i in kitchen.list_grocery_list_items("u1", newest.id)] == ["basil"]


def test_update_allergies_reports_final_set(tmp_path):
    executor, kitchen = _executor(tmp_path)
    kitchen.update_profile("u1", allergies=["peanuts"])
    call = ToolInvocation(id="x", name="update_allergies", input={"allergies": ["shellfish"], "action": "add"})
    executor.execute(call, "u1")
    assert call.result == "Successfully updated allergies. Current allergies: peanuts, shellfish"
    assert kitchen.get_profile("u1").allergies == ["peanuts", "shellfish"]

    call = ToolInvocation(
        id="y", name="update_allergies", input={"allergies": ["peanuts", "shellfish"], "action": "remove"}
    )
    executor.execute(call, "u1")
    assert call.result == "Successfully updated allergies. Current allergies: None"


def test_add_meal_plan(tmp_path):
    executor, kitchen = _executor(tmp_path)
    call = ToolInvocation(
        id="m", name="add_meal_plan", input={"date": "2025-01-06", "meal_type": "dinner", "meal_name": "Tacos"}
    )
    executor.execute(call, "u1")
    assert call.result == "Successfully added Tacos to dinner on 2025-01-06"
    assert [(m.date, m.meal_type, m.meal_name) for m in kitchen.list_meal_plans("u1")] == [
        ("2025-01-06", "dinner", "Tacos")
    ]


def test_unknown_tool_and_invalid_input_do_not_abort_siblings(tmp_path):
    executor, kitchen = _executor(tmp_path)
    calls = [
        ToolInvocation(id="1", name="delete_everything", input={}),
        ToolInvocation(id="2", name="add_pantry_item", input={"name": "rice", "quantity": -1, "unit": "cups"}),
        ToolInvocation(id="3", name="add_pantry_item", input={"name": "rice", "quantity": 3, "unit": "cups"}),
    ]
    executor.execute_all(calls, "u1")
    assert calls[0].result == "Unknown tool: delete_everything"
    assert calls[1].result.startswith("Error executing add_pantry_item: Invalid input: quantity:")
    assert calls[2].result == "Successfully added 3 cups of rice to pantry"
    assert [i.name for i in kitchen.list_pantry_items("u1")] == ["rice"]


def test_collaborator_failure_is_contained(tmp_path):
    class BrokenKitchen(JsonKitchenStore):
        def create_pantry_item(self, user_id, data):
            raise RuntimeError("database offline")

    executor, kitchen = _executor(tmp_path, BrokenKitchen(root=tmp_path))
    calls = [
        ToolInvocation(id="1", name="add_pantry_item", input={"name": "rice", "quantity": 3, "unit": "cups"}),
        ToolInvocation(id="2", name="add_grocery_item", input={"name": "milk"}),
    ]
    executor.execute_all(calls, "u1")
    assert calls[0].result == "Error executing add_pantry_item: database offline"
    assert calls[1].result == "Successfully added 1 item of milk to grocery list"


def test_custom_catalog_order_is_shared(tmp_path):
    defs = list(reversed(meal_tool_defs()))
    executor = KitchenToolExecutor(JsonKitchenStore(root=tmp_path), tool_defs=defs)
    assert [d.name for d in executor.tool_defs] == [d.name for d in defs]
    assert all(isinstance(d, ToolDef) for d in executor.tool_defs)
