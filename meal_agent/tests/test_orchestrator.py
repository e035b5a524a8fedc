import threading
from datetime import date

import pytest

from meal_agent.agents.model_adapter import ModelInvocationAdapter
from meal_agent.agents.orchestrator import Orchestrator, TurnPhase
from meal_agent.domain.exceptions import (
    AuthenticationError,
    ModelConfigurationError,
    ModelUnavailableError,
    TurnInProgressError,
    ValidationError,
)
from meal_agent.domain.models import ChatResult
from meal_agent.infrastructure.storage.conversation_store import ConversationStore
from meal_agent.infrastructure.storage.json_store import JsonConversationRepository, JsonLocalStateCache
from meal_agent.infrastructure.storage.kitchen_store import JsonKitchenStore
from meal_agent.prompts import ContextAssembler
from meal_agent.tools.definitions import ToolInvocation
from meal_agent.tools.executor import KitchenToolExecutor

TODAY = date(2025, 1, 5)


class FakeProvider:
    name = "fake"

    def __init__(self, text="", calls=None, error=None):
        self.text = text
        self.calls = calls or []
        self.error = error
        self.requests = []

    def chat(self, req):
        self.requests.append(req)
        if self.error is not None:
            raise self.error
        return ChatResult(
            provider="fake",
            model=req.model,
            text=self.text,
            tool_invocations=[ToolInvocation(id=c["id"], name=c["name"], input=c["input"]) for c in self.calls],
        )


def _setup(tmp_path, provider):
    kitchen = JsonKitchenStore(root=tmp_path)
    orchestrator = Orchestrator(
        context_assembler=ContextAssembler(kitchen, today=lambda: TODAY),
        model_adapter=ModelInvocationAdapter(provider, model="meal-chat", max_tokens=1024),
        tool_executor=KitchenToolExecutor(kitchen, today=lambda: TODAY),
    )
    store = ConversationStore(
        "u1",
        JsonConversationRepository(root=tmp_path),
        JsonLocalStateCache(root=tmp_path),
    )
    store.load()
    return orchestrator, store, kitchen


def test_pantry_turn(tmp_path):
    provider = FakeProvider(
        text="Great! I've added that to your pantry.",
        calls=[{"id": "t1", "name": "add_pantry_item", "input": {"name": "chicken", "quantity": 2, "unit": "lbs"}}],
    )
    orchestrator, store, kitchen = _setup(tmp_path, provider)

    result = orchestrator.run_turn(store, "I bought 2 lbs of chicken")
    store.close()

    assert result.assistant_message.content == (
        "Great! I've added that to your pantry.\n\n"
        "✅ Actions completed:\n"
        "• Successfully added 2 lbs of chicken to pantry"
    )
    assert result.assistant_message.tool_invocations[0].result == "Successfully added 2 lbs of chicken to pantry"
    assert [m.role for m in store.messages] == ["user", "assistant"]
    assert [p.name for p in kitchen.list_pantry_items("u1")] == ["chicken"]
    assert orchestrator.phase(store.conversation_id) is TurnPhase.IDLE


def test_history_is_plain_text_and_tools_are_offered(tmp_path):
    provider = FakeProvider(
        text="",
        calls=[{"id": "t1", "name": "add_grocery_item", "input": {"name": "milk"}}],
    )
    orchestrator, store, _ = _setup(tmp_path, provider)
    orchestrator.run_turn(store, "I need milk")
    provider.calls = []
    provider.text = "Anything else?"
    orchestrator.run_turn(store, "thanks")
    store.close()

    second = provider.requests[1]
    assert [(m.role, m.content) for m in second.messages] == [
        ("user", "I need milk"),
        ("assistant", "✅ Actions completed:\n• Successfully added 1 item of milk to grocery list"),
        ("user", "thanks"),
    ]
    assert [t.name for t in second.tools] == [
        "add_meal_plan",
        "add_pantry_item",
        "add_grocery_item",
        "update_allergies",
    ]
    assert second.max_tokens == 1024
    assert "You can help with:" in second.system


def test_empty_reply_falls_back(tmp_path):
    orchestrator, store, _ = _setup(tmp_path, FakeProvider(text=""))
    result = orchestrator.run_turn(store, "hmm")
    store.close()
    assert result.assistant_message.content == "Done!"
    assert result.assistant_message.tool_invocations == []


def test_rejects_blank_message_and_missing_user(tmp_path):
    orchestrator, store, _ = _setup(tmp_path, FakeProvider(text="hi"))
    with pytest.raises(ValidationError):
        orchestrator.run_turn(store, "   \n")
    assert store.messages == []

    anonymous = ConversationStore("", JsonConversationRepository(root=tmp_path), JsonLocalStateCache(root=tmp_path))
    with pytest.raises(AuthenticationError):
        orchestrator.run_turn(anonymous, "hello")
    anonymous.close()
    store.close()


def test_model_401_keeps_user_message(tmp_path):
    provider = FakeProvider(error=ModelConfigurationError("ANTHROPIC_API_KEY"))
    orchestrator, store, _ = _setup(tmp_path, provider)

    with pytest.raises(ModelConfigurationError) as exc:
        orchestrator.run_turn(store, "Plan tacos for Monday")
    store.close()

    assert isinstance(exc.value, AuthenticationError)
    assert [(m.role, m.content) for m in store.messages] == [("user", "Plan tacos for Monday")]
    assert orchestrator.phase(store.conversation_id) is TurnPhase.IDLE


def test_retry_after_transient_failure(tmp_path):
    provider = FakeProvider(error=ModelUnavailableError("timeout"))
    orchestrator, store, _ = _setup(tmp_path, provider)
    with pytest.raises(ModelUnavailableError):
        orchestrator.run_turn(store, "hello")

    provider.error = None
    provider.text = "Hi!"
    result = orchestrator.run_turn(store, "hello")
    store.close()
    assert result.assistant_message.content == "Hi!"
    assert [m.role for m in store.messages] == ["user", "user", "assistant"]


def test_concurrent_turn_on_same_conversation_is_rejected(tmp_path):
    entered = threading.Event()
    release = threading.Event()

    class BlockingProvider(FakeProvider):
        def chat(self, req):
            entered.set()
            release.wait(5)
            return super().chat(req)

    orchestrator, store, _ = _setup(tmp_path, BlockingProvider(text="first"))
    results = []
    worker = threading.Thread(target=lambda: results.append(orchestrator.run_turn(store, "one")))
    worker.start()
    assert entered.wait(5)
    assert orchestrator.phase(store.conversation_id) is TurnPhase.AWAITING_MODEL_REPLY

    with pytest.raises(TurnInProgressError):
        orchestrator.run_turn(store, "two")

    release.set()
    worker.join(5)
    store.close()
    assert results[0].assistant_message.content == "first"
    assert [m.content for m in store.messages] == ["one", "first"]


class CountingKitchen(JsonKitchenStore):
    def __init__(self, root):
        super().__init__(root)
        self.calls = []

    def create_pantry_item(self, user_id, data):
        self.calls.append(("create_pantry_item", data["name"]))
        return super().create_pantry_item(user_id, data)

    def create_grocery_list(self, user_id, name):
        self.calls.append(("create_grocery_list", name))
        return super().create_grocery_list(user_id, name)

    def add_grocery_list_item(self, user_id, list_id, data):
        self.calls.append(("add_grocery_list_item", data["name"]))
        return super().add_grocery_list_item(user_id, list_id, data)


def _counting_setup(tmp_path, provider):
    kitchen = CountingKitchen(tmp_path)
    orchestrator = Orchestrator(
        context_assembler=ContextAssembler(kitchen, today=lambda: TODAY),
        model_adapter=ModelInvocationAdapter(provider),
        tool_executor=KitchenToolExecutor(kitchen, today=lambda: TODAY),
    )
    store = ConversationStore("u1", JsonConversationRepository(root=tmp_path), JsonLocalStateCache(root=tmp_path))
    return orchestrator, store, kitchen


def test_pantry_collaborator_called_once(tmp_path):
    provider = FakeProvider(
        calls=[{"id": "t1", "name": "add_pantry_item", "input": {"name": "chicken", "quantity": 2, "unit": "lbs"}}],
    )
    orchestrator, store, kitchen = _counting_setup(tmp_path, provider)
    result = orchestrator.run_turn(store, "I bought 2 lbs of chicken")
    store.close()
    assert "Successfully added 2 lbs of chicken to pantry" in result.assistant_message.content
    assert kitchen.calls == [("create_pantry_item", "chicken")]


def test_grocery_turn_creates_one_list(tmp_path):
    provider = FakeProvider(
        text="Added!",
        calls=[
            {"id": "t1", "name": "add_grocery_item", "input": {"name": "pasta"}},
            {"id": "t2", "name": "add_grocery_item", "input": {"name": "parmesan", "quantity": 2, "unit": "oz"}},
        ],
    )
    orchestrator, store, kitchen = _counting_setup(tmp_path, provider)
    result = orchestrator.run_turn(store, "add pasta to grocery list")
    store.close()

    assert kitchen.calls == [
        ("create_grocery_list", "Grocery List - Jan 5"),
        ("add_grocery_list_item", "pasta"),
        ("add_grocery_list_item", "parmesan"),
    ]
    assert result.assistant_message.content.endswith(
        "• Successfully added 1 item of pasta to grocery list\n"
        "• Successfully added 2 oz of parmesan to grocery list"
    )


def test_failing_invocation_keeps_order(tmp_path):
    provider = FakeProvider(
        calls=[
            {"id": "t1", "name": "add_grocery_item", "input": {"name": "milk"}},
            {"id": "t2", "name": "update_allergies", "input": {"allergies": ["soy"], "action": "toggle"}},
            {"id": "t3", "name": "add_pantry_item", "input": {"name": "flour", "quantity": 1.5, "unit": "kg"}},
        ],
    )
    orchestrator, store, _ = _counting_setup(tmp_path, provider)
    result = orchestrator.run_turn(store, "do things")
    store.close()

    lines = result.assistant_message.content.split("\n")
    assert lines[0] == "✅ Actions completed:"
    assert lines[1] == "• Successfully added 1 item of milk to grocery list"
    assert lines[2].startswith("• Error executing update_allergies")
    assert lines[3] == "• Successfully added 1.5 kg of flour to pantry"
