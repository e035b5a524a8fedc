"""统一的对话与结果数据模型。

本模块定义了在不同 Provider 与存储之间共享的标准数据结构：

- Message: 会话中持久化的一条消息（user/assistant），附带已执行的工具调用。
- ChatMessage: 发给底层 LLM Provider 的纯文本消息（role + content）。
- ChatRequest: 发给底层 LLM Provider 的完整请求。
- ChatResult: 从 Provider 解析后的统一响应结果。
- ModelReply: 模型适配层交给编排器的结果（文本 + 工具调用列表）。

所有 Provider 适配器都必须只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional, Any, Dict, List, TYPE_CHECKING

from meal_agent.tools.definitions import ToolInvocation

if TYPE_CHECKING:
    # 仅在类型检查时导入，避免运行时循环依赖
    from meal_agent.tools.definitions import ToolDef


# 会话中持久化的消息只有两种角色
Role = Literal["user", "assistant"]


def format_timestamp(ts: datetime) -> str:
    """统一的 ISO-8601 UTC 时间格式（以 Z 结尾）。"""

    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Message:
    """会话中的一条消息，创建后不可修改，只能追加到会话末尾。

    - id: 会话内唯一且可排序的字符串。
    - tool_invocations: 该条助手消息执行过的工具调用（每个都已附带 result）。
    """

    id: str
    role: Role
    content: str
    timestamp: datetime
    tool_invocations: List[ToolInvocation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": format_timestamp(self.timestamp),
        }
        if self.tool_invocations:
            payload["toolCalls"] = [call.to_dict() for call in self.tool_invocations]
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            id=str(data["id"]),
            role=data.get("role") or "user",
            content=data.get("content") or "",
            timestamp=parse_timestamp(data.get("timestamp") or datetime.now(timezone.utc)),
            tool_invocations=[ToolInvocation.from_dict(c) for c in data.get("toolCalls") or []],
        )


@dataclass
class ChatMessage:
    """发给 Provider 的一条纯文本消息。工具调用记录永远不会回传给模型。"""

    role: Role
    content: str


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    Provider 适配层负责把本结构转换成各家 API 的 JSON 请求体。
    """

    provider: str  # 逻辑 Provider 名，如 "anthropic"
    model: str  # 逻辑模型名，如 "meal-chat"（再由 registry 映射为真实模型名）
    system: str
    messages: List[ChatMessage]
    max_tokens: Optional[int] = None
    # 工具定义列表：由 Provider 转成对应 schema
    tools: Optional[List["ToolDef"]] = None


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatResult:
    """一次模型调用的结果。

    - text: 所有文本片段按顺序拼接后的结果，可能为空字符串。
    - tool_invocations: 模型请求的工具调用（尚未执行，result 为空）。
    - raw: 原始响应 JSON，用于调试或日志记录。
    """

    provider: str
    model: str
    text: str
    tool_invocations: List[ToolInvocation] = field(default_factory=list)
    stop_reason: Optional[str] = None
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None


@dataclass
class ModelReply:
    """模型适配层的输出：纯文本 + 有序的工具调用列表。"""

    text: str
    tool_invocations: List[ToolInvocation] = field(default_factory=list)
    usage: Optional[ChatUsage] = None
