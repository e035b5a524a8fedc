from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Protocol
from uuid import uuid4

from .models import Message, format_timestamp, parse_timestamp


TITLE_MAX_CHARS = 100


def new_conversation_id() -> str:
    return f"c-{uuid4().hex}"


def derive_title(first_user_message: str) -> str:
    """会话标题：首条用户消息的前 100 个字符。"""

    return (first_user_message or "")[:TITLE_MAX_CHARS]


@dataclass
class Conversation:
    id: str
    owner: str
    title: str
    messages: List[Message] = field(default_factory=list)
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_record(self) -> Dict[str, Any]:
        """存储层使用的记录格式：{id, user_id, title, messages, updated_at}。"""

        return {
            "id": self.id,
            "user_id": self.owner,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "updated_at": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "Conversation":
        return cls(
            id=data["id"],
            owner=data["user_id"],
            title=data.get("title") or "",
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
            updated_at=parse_timestamp(data.get("updated_at") or datetime.now(timezone.utc)),
        )

    @classmethod
    def empty(cls, owner: str) -> "Conversation":
        """尚未持久化的新会话：id 在客户端生成，首条消息写入后才落盘。"""

        return cls(id=new_conversation_id(), owner=owner, title="")

    @property
    def is_new(self) -> bool:
        return not self.messages


class ConversationRepository(Protocol):
    """会话记录的远端存储协议（服务端持久化）。"""

    def get(self, user_id: str, conversation_id: str) -> Conversation:
        ...

    def save(self, conversation: Conversation) -> None:
        ...

    def list_for_user(self, user_id: str) -> List[Conversation]:
        ...

    def delete(self, user_id: str, conversation_id: str) -> None:
        ...


class LocalStateCache(Protocol):
    """客户端本地缓存：记住当前活跃会话的 id。"""

    def get_active_conversation_id(self, user_id: str) -> Optional[str]:
        ...

    def set_active_conversation_id(self, user_id: str, conversation_id: Optional[str]) -> None:
        ...
