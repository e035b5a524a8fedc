"""客户端会话存储。

内存中的消息列表是界面的权威来源：append 立即生效，
完整的消息列表随后在单线程后台执行器里写回远端（串行、后写覆盖先写）。
后台写入失败只记录日志，永远不会中断对话。
"""

import logging
import re
import threading
from contextlib import contextmanager
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, List, Optional

from meal_agent.domain.conversation import (
    Conversation,
    ConversationRepository,
    LocalStateCache,
    derive_title,
)
from meal_agent.domain.exceptions import TurnInProgressError
from meal_agent.domain.models import Message, Role
from meal_agent.tools.definitions import ToolInvocation
from meal_agent.infrastructure.logging.logger import log_event

_MESSAGE_ID_RE = re.compile(r"^(\d{13})(?:-(\d{4}))?$")
_MAX_SEQ = 9999


class ConversationStore:
    """单个用户的活跃会话。

    - load(): 从本地缓存的 id（或显式 id）恢复会话，失败时退化为空会话。
    - append(): 乐观追加，随后异步持久化整段消息列表。
    - clear(): 开始新会话，不删除远端记录。
    - turn(): 标记一轮对话进行中，期间 load/clear 会被拒绝，回复只会落到发起它的会话。
    """

    def __init__(
        self,
        user_id: str,
        repository: ConversationRepository,
        local_cache: LocalStateCache,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.user_id = user_id
        self._repo = repository
        self._cache = local_cache
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self._conversation = Conversation.empty(user_id)
        self._last_millis = 0
        self._last_seq = 0
        self._last_timestamp: Optional[datetime] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="conversation-sync")
        self._pending: List[Future] = []
        self._closed = False
        self._turn_active = False

    # ---- 只读视图 ----

    @property
    def conversation_id(self) -> str:
        with self._lock:
            return self._conversation.id

    @property
    def title(self) -> str:
        with self._lock:
            return self._conversation.title

    @property
    def messages(self) -> List[Message]:
        with self._lock:
            return list(self._conversation.messages)

    def snapshot(self) -> Conversation:
        with self._lock:
            return replace(self._conversation, messages=list(self._conversation.messages))

    # ---- 生命周期 ----

    def load(self, conversation_id: Optional[str] = None) -> Conversation:
        """恢复会话；没有可恢复的 id、记录不存在或读取失败时返回空会话。"""

        self._ensure_idle()
        cid = conversation_id or self._cache.get_active_conversation_id(self.user_id)
        if not cid:
            return self._reset()
        try:
            conv = self._repo.get(self.user_id, cid)
        except Exception as e:
            log_event(
                logging.WARNING,
                "conversation load failed, starting empty",
                {"user_id": self.user_id, "conversation_id": cid},
                error=str(e),
                error_type=type(e).__name__,
            )
            self._cache.set_active_conversation_id(self.user_id, None)
            return self._reset()

        with self._lock:
            self._ensure_idle()
            self._conversation = conv
            self._last_millis = 0
            self._last_seq = 0
            self._last_timestamp = None
            for message in conv.messages:
                self._observe(message)
        self._cache.set_active_conversation_id(self.user_id, conv.id)
        return self.snapshot()

    def clear(self) -> Conversation:
        """开始一个新会话。旧会话保留在远端，只是不再是活跃会话。"""

        self._ensure_idle()
        self._cache.set_active_conversation_id(self.user_id, None)
        return self._reset()

    @contextmanager
    def turn(self):
        """占住当前会话直到回合结束；同一用户同时只能有一轮对话。"""

        with self._lock:
            self._ensure_idle()
            self._turn_active = True
        try:
            yield
        finally:
            with self._lock:
                self._turn_active = False

    def flush(self, timeout: Optional[float] = None) -> None:
        """等待已排队的后台写入完成。"""

        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)
        with self._lock:
            self._pending = [f for f in self._pending if not f.done()]

    def close(self) -> None:
        self.flush()
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True)

    # ---- 写入 ----

    def new_message(
        self,
        role: Role,
        content: str,
        tool_invocations: Optional[List[ToolInvocation]] = None,
    ) -> Message:
        """创建一条带单调 id 与非递减时间戳的消息（尚未追加）。"""

        with self._lock:
            now = self._clock()
            if now.tzinfo is None:
                now = now.replace(tzinfo=timezone.utc)
            if self._last_timestamp is not None and now < self._last_timestamp:
                now = self._last_timestamp
            message = Message(
                id=self._next_id(now),
                role=role,
                content=content,
                timestamp=now,
                tool_invocations=list(tool_invocations or []),
            )
            self._last_timestamp = now
            return message

    def append(self, message: Message) -> Message:
        with self._lock:
            if self._closed:
                raise RuntimeError("ConversationStore is closed")
            conv = self._conversation
            first_message = conv.is_new
            conv.messages.append(message)
            conv.updated_at = message.timestamp
            if not conv.title and message.role == "user":
                conv.title = derive_title(message.content)
            self._observe(message)
            record = replace(conv, messages=list(conv.messages))
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(self._executor.submit(self._persist, record))
        if first_message:
            self._cache.set_active_conversation_id(self.user_id, record.id)
        return message

    # ---- 内部 ----

    def _ensure_idle(self) -> None:
        with self._lock:
            if self._turn_active:
                raise TurnInProgressError(self._conversation.id)

    def _reset(self) -> Conversation:
        with self._lock:
            self._ensure_idle()
            self._conversation = Conversation.empty(self.user_id)
            return self.snapshot()

    def _persist(self, record: Conversation) -> None:
        try:
            self._repo.save(record)
        except Exception as e:
            # 远端写入失败不影响界面，下一次 append 会带着完整列表重试
            log_event(
                logging.ERROR,
                "conversation sync failed",
                {"user_id": record.owner, "conversation_id": record.id},
                error=str(e),
                error_type=type(e).__name__,
                message_count=len(record.messages),
            )

    def _next_id(self, now: datetime) -> str:
        millis = int(now.timestamp() * 1000)
        if millis > self._last_millis:
            seq = 0
        elif self._last_seq < _MAX_SEQ:
            millis, seq = self._last_millis, self._last_seq + 1
        else:
            millis, seq = self._last_millis + 1, 0
        self._last_millis, self._last_seq = millis, seq
        return f"{millis:013d}-{seq:04d}"

    def _observe(self, message: Message) -> None:
        m = _MESSAGE_ID_RE.match(message.id)
        if m:
            millis = int(m.group(1))
            seq = int(m.group(2) or 0)
            if (millis, seq) > (self._last_millis, self._last_seq):
                self._last_millis, self._last_seq = millis, seq
        if self._last_timestamp is None or message.timestamp > self._last_timestamp:
            self._last_timestamp = message.timestamp
