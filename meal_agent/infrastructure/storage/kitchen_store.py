import json
import os
import threading
from dataclasses import asdict
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from meal_agent.config.settings import settings
from meal_agent.domain.exceptions import NotFoundError, PersistenceError, ValidationError
from meal_agent.domain.kitchen import (
    MEAL_TYPES,
    RECENT_GROCERY_LISTS,
    ContextBundle,
    GroceryItem,
    GroceryList,
    MealPlan,
    PantryItem,
    Profile,
    Recipe,
    meal_plan_window,
)


def _empty_document() -> Dict[str, Any]:
    return {
        "profile": None,
        "recipes": [],
        "pantry_items": [],
        "meal_plans": [],
        "grocery_lists": [],
        "grocery_items": [],
    }


class JsonKitchenStore:
    """基于 JSON 文件的厨房领域存储，每个用户一个文档。

    实现 KitchenCollaborators 协议；写入采用临时文件 + os.replace，保证原子性。
    同一个实例内 created_at 严格递增，“按创建时间倒序”因此是确定的。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._kitchen_root = self._root / "kitchen"
        self._kitchen_root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._last_created: Optional[datetime] = None

    # ---- 上下文快照 ----

    def fetch_user_context(self, user_id: str, today: date) -> ContextBundle:
        with self._lock:
            doc = self._read(user_id)
        start, end = meal_plan_window(today)
        meal_plans = [
            MealPlan(**m) for m in doc["meal_plans"]
            if start.isoformat() <= m["date"] <= end.isoformat()
        ]
        meal_plans.sort(key=lambda m: m.date)
        recent_lists = self._newest_first(doc["grocery_lists"])[:RECENT_GROCERY_LISTS]
        grocery_items: List[GroceryItem] = []
        for lst in recent_lists:
            grocery_items.extend(
                GroceryItem(**item) for item in doc["grocery_items"] if item["list_id"] == lst["id"]
            )
        return ContextBundle(
            profile=Profile(**doc["profile"]) if doc["profile"] else None,
            recipes=[Recipe(**r) for r in self._newest_first(doc["recipes"])],
            pantry_items=[PantryItem(**p) for p in self._newest_first(doc["pantry_items"])],
            meal_plans=meal_plans,
            grocery_items=grocery_items,
        )

    # ---- 菜谱 ----

    def add_recipe(self, user_id: str, title: str, is_favorite: bool = False, **fields: Any) -> Recipe:
        recipe = Recipe(
            id=f"r-{uuid4().hex}",
            user_id=user_id,
            title=title,
            is_favorite=is_favorite,
            created_at=self._next_created_at(),
            **fields,
        )
        self._append(user_id, "recipes", asdict(recipe))
        return recipe

    # ---- 餐食计划 ----

    def create_meal_plan(self, user_id: str, data: Dict[str, Any]) -> MealPlan:
        if data.get("meal_type") not in MEAL_TYPES:
            raise ValidationError(f"Invalid meal type: {data.get('meal_type')}")
        plan = MealPlan(
            id=f"mp-{uuid4().hex}",
            user_id=user_id,
            date=str(data["date"]),
            meal_type=data["meal_type"],
            meal_name=data.get("meal_name"),
            recipe_id=data.get("recipe_id"),
            notes=data.get("notes"),
            created_at=self._next_created_at(),
        )
        self._append(user_id, "meal_plans", asdict(plan))
        return plan

    def delete_meal_plan(self, user_id: str, meal_plan_id: str) -> None:
        with self._lock:
            doc = self._read(user_id)
            remaining = [m for m in doc["meal_plans"] if m["id"] != meal_plan_id]
            if len(remaining) == len(doc["meal_plans"]):
                raise NotFoundError(meal_plan_id, code="MEAL_PLAN_NOT_FOUND")
            doc["meal_plans"] = remaining
            self._write(user_id, doc)

    def list_meal_plans(self, user_id: str) -> List[MealPlan]:
        with self._lock:
            doc = self._read(user_id)
        return sorted((MealPlan(**m) for m in doc["meal_plans"]), key=lambda m: m.date)

    # ---- 储藏室 ----

    def create_pantry_item(self, user_id: str, data: Dict[str, Any]) -> PantryItem:
        item = PantryItem(
            id=f"p-{uuid4().hex}",
            user_id=user_id,
            name=data["name"],
            quantity=data["quantity"],
            unit=data["unit"],
            category=data.get("category"),
            expiry_date=data.get("expiry_date"),
            created_at=self._next_created_at(),
        )
        self._append(user_id, "pantry_items", asdict(item))
        return item

    def list_pantry_items(self, user_id: str) -> List[PantryItem]:
        with self._lock:
            doc = self._read(user_id)
        return [PantryItem(**p) for p in self._newest_first(doc["pantry_items"])]

    # ---- 购物清单 ----

    def list_grocery_lists(self, user_id: str) -> List[GroceryList]:
        with self._lock:
            doc = self._read(user_id)
        return [GroceryList(**g) for g in self._newest_first(doc["grocery_lists"])]

    def create_grocery_list(self, user_id: str, name: str) -> GroceryList:
        lst = GroceryList(
            id=f"gl-{uuid4().hex}",
            user_id=user_id,
            name=name,
            created_at=self._next_created_at(),
        )
        self._append(user_id, "grocery_lists", asdict(lst))
        return lst

    def add_grocery_list_item(self, user_id: str, list_id: str, data: Dict[str, Any]) -> GroceryItem:
        with self._lock:
            doc = self._read(user_id)
            if not any(g["id"] == list_id for g in doc["grocery_lists"]):
                raise NotFoundError(list_id, code="GROCERY_LIST_NOT_FOUND")
            item = GroceryItem(
                id=f"gi-{uuid4().hex}",
                list_id=list_id,
                name=data["name"],
                quantity=data["quantity"],
                unit=data["unit"],
                category=data.get("category"),
                is_checked=bool(data.get("is_checked", False)),
                recipe_id=data.get("recipe_id"),
                created_at=self._next_created_at(),
            )
            doc["grocery_items"].append(asdict(item))
            self._write(user_id, doc)
        return item

    def list_grocery_list_items(self, user_id: str, list_id: str) -> List[GroceryItem]:
        with self._lock:
            doc = self._read(user_id)
        return [GroceryItem(**i) for i in doc["grocery_items"] if i["list_id"] == list_id]

    # ---- 用户资料 ----

    def get_profile(self, user_id: str) -> Optional[Profile]:
        with self._lock:
            doc = self._read(user_id)
        return Profile(**doc["profile"]) if doc["profile"] else None

    def update_profile(
        self,
        user_id: str,
        allergies: Optional[List[str]] = None,
        full_name: Optional[str] = None,
    ) -> Profile:
        with self._lock:
            doc = self._read(user_id)
            profile = Profile(**doc["profile"]) if doc["profile"] else Profile(id=user_id)
            if allergies is not None:
                profile.allergies = list(allergies)
            if full_name is not None:
                profile.full_name = full_name
            doc["profile"] = asdict(profile)
            self._write(user_id, doc)
        return profile

    # ---- 内部工具 ----

    def _next_created_at(self) -> str:
        with self._lock:
            now = datetime.now(timezone.utc)
            if self._last_created is not None and now <= self._last_created:
                now = self._last_created + timedelta(microseconds=1)
            self._last_created = now
        # 固定微秒位数，保证字符串排序与时间排序一致
        return now.isoformat(timespec="microseconds").replace("+00:00", "Z")

    @staticmethod
    def _newest_first(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return sorted(rows, key=lambda r: r.get("created_at") or "", reverse=True)

    def _append(self, user_id: str, key: str, row: Dict[str, Any]) -> None:
        with self._lock:
            doc = self._read(user_id)
            doc[key].append(row)
            self._write(user_id, doc)

    def _path(self, user_id: str) -> Path:
        return self._kitchen_root / f"{user_id}.json"

    def _read(self, user_id: str) -> Dict[str, Any]:
        path = self._path(user_id)
        if not path.exists():
            return _empty_document()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(str(e), code="STORE_READ_ERROR")
        doc = _empty_document()
        doc.update(data)
        return doc

    def _write(self, user_id: str, doc: Dict[str, Any]) -> None:
        path = self._path(user_id)
        tmp_path = path.with_name(f"{path.stem}.{uuid4().hex}.json.tmp")
        try:
            tmp_path.write_text(json.dumps(doc, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise PersistenceError(str(e))
