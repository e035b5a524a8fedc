"""工具输入校验：目录中的 input_schema 就是权威校验规则。"""

from typing import Any, Dict

from jsonschema import Draft202012Validator, FormatChecker

from meal_agent.domain.exceptions import ValidationError
from .definitions import ToolDef


_format_checker = FormatChecker()


def validate_tool_input(tool: ToolDef, arguments: Dict[str, Any]) -> None:
    """按工具的 JSON Schema 校验模型给出的参数，失败时抛出 ValidationError。"""

    if not isinstance(arguments, dict):
        raise ValidationError(f"Invalid input for {tool.name}: expected an object")
    validator = Draft202012Validator(tool.input_schema(), format_checker=_format_checker)
    errors = sorted(validator.iter_errors(arguments), key=lambda e: list(e.absolute_path))
    if errors:
        first = errors[0]
        location = ".".join(str(p) for p in first.absolute_path)
        detail = f"{location}: {first.message}" if location else first.message
        raise ValidationError(f"Invalid input: {detail}", tool=tool.name)
