import json
import os
import threading
from pathlib import Path
from typing import Dict, Any, List, Optional
from uuid import uuid4

from meal_agent.config.settings import settings
from meal_agent.domain.conversation import Conversation
from meal_agent.domain.exceptions import BusinessError, NotFoundError, PersistenceError


def _atomic_write_json(path: Path, obj: Any) -> None:
    tmp_path = path.with_name(f"{path.stem}.{uuid4().hex}.json.tmp")
    try:
        tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError as e:
        raise PersistenceError(str(e))


class JsonConversationRepository:
    """会话记录的 JSON 文件存储，每个会话一个文件。

    记录格式：{id, user_id, title, messages, updated_at}。
    会话只属于它的创建者，读取他人的会话等同于不存在。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)

    def get(self, user_id: str, conversation_id: str) -> Conversation:
        path = self._path(conversation_id)
        if not path.exists():
            raise NotFoundError(conversation_id, code="CONVERSATION_NOT_FOUND")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            conv = Conversation.from_record(data)
        except (OSError, ValueError, KeyError) as e:
            raise PersistenceError(str(e), code="STORE_READ_ERROR")
        if conv.owner != user_id:
            raise NotFoundError(conversation_id, code="CONVERSATION_NOT_FOUND")
        return conv

    def save(self, conversation: Conversation) -> None:
        if not conversation.id:
            raise BusinessError(code="STORE_WRITE_ERROR", message="conversation id is required")
        _atomic_write_json(self._path(conversation.id), conversation.to_record())

    def list_for_user(self, user_id: str) -> List[Conversation]:
        items: List[Conversation] = []
        for path in self._conv_root.glob("*.json"):
            try:
                conv = Conversation.from_record(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError, KeyError):
                continue
            if conv.owner == user_id:
                items.append(conv)
        items.sort(key=lambda c: c.updated_at, reverse=True)
        return items

    def delete(self, user_id: str, conversation_id: str) -> None:
        self.get(user_id, conversation_id)
        try:
            self._path(conversation_id).unlink()
        except OSError as e:
            raise PersistenceError(str(e), code="STORE_DELETE_ERROR")

    def _path(self, conversation_id: str) -> Path:
        return self._conv_root / f"{conversation_id}.json"


class JsonLocalStateCache:
    """客户端本地状态：每个用户当前活跃的会话 id。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._path = self._root / "local_state.json"
        self._lock = threading.Lock()

    def get_active_conversation_id(self, user_id: str) -> Optional[str]:
        with self._lock:
            return self._read().get(user_id)

    def set_active_conversation_id(self, user_id: str, conversation_id: Optional[str]) -> None:
        with self._lock:
            state = self._read()
            if conversation_id:
                state[user_id] = conversation_id
            else:
                state.pop(user_id, None)
            _atomic_write_json(self._path, state)

    def _read(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return {}
        return data if isinstance(data, dict) else {}
