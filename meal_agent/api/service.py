"""对外 API 服务模块。

提供与传输层无关的处理函数（返回普通 dict），供 HTTP 路由或 UI 直接调用。
"""

import threading
from typing import Any, Dict, List, Optional, Tuple

from meal_agent.agents.model_adapter import ModelInvocationAdapter
from meal_agent.agents.orchestrator import Orchestrator
from meal_agent.config.settings import settings
from meal_agent.domain.conversation import ConversationRepository, LocalStateCache
from meal_agent.domain.exceptions import AuthenticationError, BusinessError
from meal_agent.domain.models import format_timestamp
from meal_agent.infrastructure.logging.logger import logger
from meal_agent.infrastructure.storage.conversation_store import ConversationStore
from meal_agent.infrastructure.storage.json_store import JsonConversationRepository, JsonLocalStateCache
from meal_agent.infrastructure.storage.kitchen_store import JsonKitchenStore
from meal_agent.prompts import ContextAssembler
from meal_agent.providers import create_provider
from meal_agent.tools.executor import KitchenToolExecutor


class ChatService:
    """按用户维护活跃会话，并把每条消息交给编排器处理。"""

    def __init__(
        self,
        orchestrator: Orchestrator,
        repository: ConversationRepository,
        local_cache: LocalStateCache,
    ):
        self._orchestrator = orchestrator
        self._repository = repository
        self._local_cache = local_cache
        self._stores: Dict[str, ConversationStore] = {}
        self._lock = threading.Lock()

    def send_message(
        self,
        user_id: str,
        message: str,
        conversation_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """发送一条用户消息。

        Args:
            user_id: 已认证用户 id
            message: 用户输入
            conversation_id: 会话 id（可选，不提供则沿用当前活跃会话）

        Returns:
            {conversation_id, title, message}，message 为助手消息的序列化结果

        Raises:
            各种 domain.exceptions 中定义的异常
        """
        store = self._store_for(user_id)
        try:
            if conversation_id and conversation_id != store.conversation_id:
                store.load(conversation_id)
            result = self._orchestrator.run_turn(store, message)
        except Exception as e:
            logger.error(f"Chat failed: {e}", extra={"extra": {
                "user_id": user_id,
                "conversation_id": conversation_id or store.conversation_id,
                "error": str(e),
                "error_type": type(e).__name__,
            }})
            raise
        return {
            "conversation_id": result.conversation.id,
            "title": result.conversation.title,
            "message": result.assistant_message.to_dict(),
        }

    def get_messages(self, user_id: str, conversation_id: Optional[str] = None) -> Dict[str, Any]:
        """加载会话消息；会话不存在或读取失败时返回空列表。

        请求的正是当前活跃会话时直接返回内存中的副本，不等待后台同步。
        该用户有回合在处理中时切换到其他会话会抛出 TurnInProgressError。
        """

        store = self._store_for(user_id)
        if conversation_id and conversation_id != store.conversation_id:
            conv = store.load(conversation_id)
        else:
            conv = store.snapshot()
        return {
            "conversation_id": conv.id,
            "title": conv.title,
            "messages": [m.to_dict() for m in conv.messages],
        }

    def new_chat(self, user_id: str) -> Dict[str, Any]:
        """开始新会话；回合处理中调用会抛出 TurnInProgressError。"""

        conv = self._store_for(user_id).clear()
        return {"conversation_id": conv.id, "messages": []}

    def list_conversations(self, user_id: str) -> List[Dict[str, Any]]:
        if not user_id:
            raise AuthenticationError()
        return [
            {
                "id": c.id,
                "title": c.title,
                "updated_at": format_timestamp(c.updated_at),
                "message_count": len(c.messages),
            }
            for c in self._repository.list_for_user(user_id)
        ]

    def flush(self) -> None:
        """等待所有后台会话写入完成。"""

        with self._lock:
            stores = list(self._stores.values())
        for store in stores:
            store.flush()

    def close(self) -> None:
        with self._lock:
            stores = list(self._stores.values())
            self._stores.clear()
        for store in stores:
            store.close()

    def _store_for(self, user_id: str) -> ConversationStore:
        if not user_id:
            raise AuthenticationError()
        with self._lock:
            store = self._stores.get(user_id)
            if store is None:
                store = ConversationStore(user_id, self._repository, self._local_cache)
                store.load()
                self._stores[user_id] = store
            return store


def error_response(exc: Exception) -> Tuple[Dict[str, Any], int]:
    """把异常转换为 (响应体, HTTP 状态码)。"""

    if isinstance(exc, BusinessError):
        return {
            "error": exc.user_message,
            "code": exc.code,
            "retryable": exc.retryable,
        }, exc.http_status
    return {"error": "Internal server error", "code": "INTERNAL_ERROR", "retryable": False}, 500


_service: Optional[ChatService] = None
_service_lock = threading.Lock()


def get_default_service() -> ChatService:
    """获取默认装配的 ChatService 实例（单例）。"""
    global _service
    with _service_lock:
        if _service is None:
            kitchen = JsonKitchenStore(root=settings.storage_root)
            executor = KitchenToolExecutor(kitchen)
            orchestrator = Orchestrator(
                context_assembler=ContextAssembler(kitchen),
                model_adapter=ModelInvocationAdapter(create_provider(settings.default_provider)),
                tool_executor=executor,
            )
            _service = ChatService(
                orchestrator=orchestrator,
                repository=JsonConversationRepository(root=settings.storage_root),
                local_cache=JsonLocalStateCache(root=settings.storage_root),
            )
        return _service
