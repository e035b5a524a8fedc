import threading

import pytest

from meal_agent.agents.model_adapter import ModelInvocationAdapter
from meal_agent.agents.orchestrator import Orchestrator
from meal_agent.api.service import ChatService, error_response
from meal_agent.domain.exceptions import (
    AuthenticationError,
    ModelConfigurationError,
    ModelUnavailableError,
    TurnInProgressError,
)
from meal_agent.domain.models import ChatResult
from meal_agent.infrastructure.storage.json_store import JsonConversationRepository, JsonLocalStateCache
from meal_agent.infrastructure.storage.kitchen_store import JsonKitchenStore
from meal_agent.prompts import ContextAssembler
from meal_agent.tools.executor import KitchenToolExecutor


class FakeProvider:
    name = "fake"

    def __init__(self, text="ok", error=None):
        self.text = text
        self.error = error

    def chat(self, req):
        if self.error is not None:
            raise self.error
        return ChatResult(provider="fake", model=req.model, text=self.text)


def _service(tmp_path, provider):
    kitchen = JsonKitchenStore(root=tmp_path)
    orchestrator = Orchestrator(
        context_assembler=ContextAssembler(kitchen),
        model_adapter=ModelInvocationAdapter(provider),
        tool_executor=KitchenToolExecutor(kitchen),
    )
    return ChatService(
        orchestrator=orchestrator,
        repository=JsonConversationRepository(root=tmp_path),
        local_cache=JsonLocalStateCache(root=tmp_path),
    )


def test_send_and_reload(tmp_path):
    svc = _service(tmp_path, FakeProvider(text="Try a stir fry."))
    out = svc.send_message("u1", "What should I cook?")
    svc.flush()

    assert out["title"] == "What should I cook?"
    assert out["message"]["role"] == "assistant"
    assert out["message"]["content"] == "Try a stir fry."
    assert out["message"]["timestamp"].endswith("Z")

    listed = svc.list_conversations("u1")
    assert [c["id"] for c in listed] == [out["conversation_id"]]
    assert listed[0]["message_count"] == 2
    svc.close()

    fresh = _service(tmp_path, FakeProvider())
    loaded = fresh.get_messages("u1")
    assert loaded["conversation_id"] == out["conversation_id"]
    assert [m["content"] for m in loaded["messages"]] == ["What should I cook?", "Try a stir fry."]
    fresh.close()


def test_new_chat_and_unknown_conversation(tmp_path):
    svc = _service(tmp_path, FakeProvider())
    first = svc.send_message("u1", "hello")
    fresh = svc.new_chat("u1")
    assert fresh["messages"] == []
    assert fresh["conversation_id"] != first["conversation_id"]
    assert svc.get_messages("u1", "c-does-not-exist")["messages"] == []
    svc.close()


def test_anonymous_user_is_rejected(tmp_path):
    svc = _service(tmp_path, FakeProvider())
    with pytest.raises(AuthenticationError):
        svc.send_message("", "hello")
    with pytest.raises(AuthenticationError):
        svc.list_conversations("")
    svc.close()


def test_turn_errors_are_reraised(tmp_path):
    svc = _service(tmp_path, FakeProvider(error=ModelUnavailableError("overloaded")))
    with pytest.raises(ModelUnavailableError):
        svc.send_message("u1", "hello")
    assert [m["role"] for m in svc.get_messages("u1")["messages"]] == ["user"]
    svc.close()


def test_error_response():
    body, status = error_response(ModelConfigurationError("ANTHROPIC_API_KEY"))
    assert status == 401
    assert body["code"] == "MODEL_CONFIGURATION"
    assert "ANTHROPIC_API_KEY" in body["error"]
    assert body["retryable"] is False

    body, status = error_response(ModelUnavailableError("timeout"))
    assert (status, body["retryable"]) == (503, True)

    body, status = error_response(RuntimeError("boom"))
    assert status == 500
    assert "boom" not in body["error"]


def test_chat_cannot_switch_while_reply_pending(tmp_path):
    entered = threading.Event()
    release = threading.Event()

    class BlockingProvider(FakeProvider):
        def chat(self, req):
            entered.set()
            release.wait(5)
            return super().chat(req)

    svc = _service(tmp_path, BlockingProvider(text="reply to first"))
    results = []
    worker = threading.Thread(target=lambda: results.append(svc.send_message("u1", "first question")))
    worker.start()
    assert entered.wait(5)

    with pytest.raises(TurnInProgressError):
        svc.new_chat("u1")
    with pytest.raises(TurnInProgressError):
        svc.get_messages("u1", "c-some-other-chat")
    assert [m["content"] for m in svc.get_messages("u1")["messages"]] == ["first question"]

    release.set()
    worker.join(5)
    svc.flush()

    out = results[0]
    assert out["title"] == "first question"
    listed = svc.list_conversations("u1")
    assert [(c["id"], c["message_count"]) for c in listed] == [(out["conversation_id"], 2)]
    assert svc.new_chat("u1")["conversation_id"] != out["conversation_id"]
    svc.close()
