"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将可用工具列表暴露给 LLM（ToolDef / ToolParam）。
- 在执行引擎中保存和执行模型触发的工具调用（ToolInvocation）。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ToolName(str, Enum):
    """工具目录中的全部工具名。新增工具时目录与执行引擎必须同步修改。"""

    ADD_MEAL_PLAN = "add_meal_plan"
    ADD_PANTRY_ITEM = "add_pantry_item"
    ADD_GROCERY_ITEM = "add_grocery_item"
    UPDATE_ALLERGIES = "update_allergies"

    @classmethod
    def parse(cls, raw: str) -> Optional["ToolName"]:
        try:
            return cls(raw)
        except ValueError:
            return None


@dataclass
class ToolParam:
    """单个工具参数的定义。"""

    name: str
    description: str
    required: bool
    schema: Dict[str, Any]


@dataclass
class ToolDef:
    """一个可供 LLM 调用的工具定义。"""

    name: str
    description: str
    params: Dict[str, ToolParam]

    def input_schema(self) -> Dict[str, Any]:
        """生成 JSON Schema 形式的输入定义（发给模型，也用于执行前校验）。"""

        properties: Dict[str, Any] = {}
        required: List[str] = []
        for name, param in self.params.items():
            prop = dict(param.schema or {"type": "string"})
            if param.description:
                prop["description"] = param.description
            properties[name] = prop
            if param.required:
                required.append(name)
        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }


@dataclass
class ToolInvocation:
    """模型发起的一次工具调用请求。

    由模型适配层创建（id + name + input），由执行引擎补全 result。
    进入最终消息时 result 必须已经填好。
    """

    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)
    result: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id, "name": self.name, "input": self.input}
        if self.result is not None:
            payload["result"] = self.result
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolInvocation":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            input=dict(data.get("input") or {}),
            result=data.get("result"),
        )
