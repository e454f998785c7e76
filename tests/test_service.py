"""
Tests for the service facade: validation, stored chat, evolve results.
"""

import asyncio

import pytest

from poetloop.chat.orchestrator import ChatOrchestrator
from poetloop.errors import ExternalCapabilityFailure, InvalidRequest, NotFound
from poetloop.poet.engine import PoetEngine
from poetloop.service import EvolveResult, PoetLoopService, build_service, validate_id
from poetloop.storage.models import PoemCycle
from poetloop.tools.registry import ToolRegistry

from stubs import GatedBackend, ScriptedBackend, failure, poet_reply, reply, tool_call


def _service(store, clock, *responses):
    backend = ScriptedBackend(*responses)
    orch = ChatOrchestrator(backend, ToolRegistry({}))
    return PoetLoopService(store, orch, PoetEngine(store, orch), clock=clock), backend


def _user(text):
    return {"user": {"content": text}}


# ---------------------------------------------------------------------------
# Identifier validation
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("value,expected", [(0, 0), (7, 7), ("42", 42), (" 3 ", 3), (2**63 - 1, 2**63 - 1)])
def test_validate_id_accepts(value, expected):
    assert validate_id(value) == expected


@pytest.mark.parametrize("value", [-1, 2**63, "abc", "-1", "1.5", "²", "1²", 1.5, None, True, [1]])
def test_validate_id_rejects(value):
    with pytest.raises(InvalidRequest):
        validate_id(value)


def test_invalid_ids_rejected_by_operations(store, clock):
    service, _ = _service(store, clock, "x")
    with pytest.raises(InvalidRequest):
        service.get_conversation_messages("nope")
    with pytest.raises(InvalidRequest):
        service.delete_conversation(-5)
    with pytest.raises(InvalidRequest):
        service.get_poem_by_cycle("first")


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_chat_stores_nothing(store, clock):
    service, _ = _service(store, clock, "hi back")
    assert await service.chat([_user("hi")]) == "hi back"
    assert service.get_conversations() == []


@pytest.mark.asyncio
async def test_chat_rejects_non_list(store, clock):
    service, _ = _service(store, clock, "x")
    with pytest.raises(InvalidRequest):
        await service.chat({"user": {"content": "hi"}})


@pytest.mark.asyncio
async def test_chat_with_storage_creates_conversation(store, clock):
    service, _ = _service(store, clock, "Hello, human.")

    conv_id, text = await service.chat_with_storage(None, [_user("hello there, machine")])

    assert text == "Hello, human."
    joined = service.get_conversation_with_messages(conv_id)
    assert joined.conversation.title == "hello there, machine"
    assert joined.conversation.message_count == 2
    assert [(m.role, m.content) for m in joined.messages] == [
        ("user", "hello there, machine"),
        ("assistant", "Hello, human."),
    ]
    assert joined.messages[0].timestamp == 1000
    assert joined.messages[1].timestamp == 2000


@pytest.mark.asyncio
async def test_chat_with_storage_title_is_truncated(store, clock):
    service, _ = _service(store, clock, "ok")
    conv_id, _ = await service.chat_with_storage(None, [_user("x" * 80)])
    assert service.get_conversation_with_messages(conv_id).conversation.title == "x" * 50


@pytest.mark.asyncio
async def test_chat_with_storage_default_title(store, clock):
    service, _ = _service(store, clock, "ok")
    conv_id, _ = await service.chat_with_storage(None, [{"system": {"content": "be brief"}}])
    assert service.get_conversation_with_messages(conv_id).conversation.title == "New conversation"


@pytest.mark.asyncio
async def test_chat_with_storage_replays_history(store, clock):
    service, backend = _service(store, clock, "first answer", "second answer")

    conv_id, _ = await service.chat_with_storage(None, [_user("first question")])
    same_id, text = await service.chat_with_storage(conv_id, [_user("second question")])

    assert same_id == conv_id
    assert text == "second answer"
    sent = backend.bodies[1]["messages"]
    assert [m["content"] for m in sent] == ["first question", "first answer", "second question"]
    assert len(service.get_conversation_messages(conv_id)) == 4


@pytest.mark.asyncio
async def test_chat_with_storage_unknown_id(store, clock):
    service, backend = _service(store, clock, "never")
    with pytest.raises(NotFound):
        await service.chat_with_storage(999, [_user("hello")])
    assert backend.bodies == []


@pytest.mark.asyncio
async def test_chat_with_storage_failure_persists_nothing(store, clock):
    service, _ = _service(store, clock, failure())
    with pytest.raises(ExternalCapabilityFailure):
        await service.chat_with_storage(None, [_user("hello")])
    assert service.get_conversations() == []


@pytest.mark.asyncio
async def test_chat_with_storage_failure_keeps_existing_transcript(store, clock):
    service, backend = _service(store, clock, "fine", failure())
    conv_id, _ = await service.chat_with_storage(None, [_user("one")])

    with pytest.raises(ExternalCapabilityFailure):
        await service.chat_with_storage(conv_id, [_user("two")])
    assert len(service.get_conversation_messages(conv_id)) == 2


@pytest.mark.asyncio
async def test_chat_with_storage_rejects_empty(store, clock):
    service, _ = _service(store, clock, "x")
    with pytest.raises(InvalidRequest):
        await service.chat_with_storage(None, [])


@pytest.mark.asyncio
async def test_chat_with_storage_tool_round_stores_final_reply(store, clock):
    service, _ = _service(
        store, clock,
        reply(tool_calls=[tool_call("c1", "calculator", '{"expression": "2+2"}')]),
        reply("It's 4."),
    )
    conv_id, text = await service.chat_with_storage(None, [_user("2+2?")])
    assert text == "It's 4."
    assert [m.role for m in service.get_conversation_messages(conv_id)] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_prompt(store, clock):
    service, backend = _service(store, clock, "a haiku")
    assert await service.prompt("write a haiku") == "a haiku"
    assert backend.bodies[0]["messages"] == [{"role": "user", "content": "write a haiku"}]
    with pytest.raises(InvalidRequest):
        await service.prompt("   ")


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_rename_and_delete(store, clock):
    service, _ = _service(store, clock, "ok")
    conv_id, _ = await service.chat_with_storage(None, [_user("hello")])

    assert service.update_conversation_title(conv_id, "Renamed") is True
    assert service.update_conversation_title(conv_id + 100, "x") is False
    assert service.get_conversations()[0].title == "Renamed"

    assert service.delete_conversation(conv_id) is True
    assert service.get_conversation_with_messages(conv_id) is None
    assert service.delete_conversation(conv_id) is False


def test_update_title_requires_string(store, clock):
    service, _ = _service(store, clock, "x")
    with pytest.raises(InvalidRequest):
        service.update_conversation_title(1, None)


# ---------------------------------------------------------------------------
# Poet
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_evolve_poet_ok(store, clock):
    service, _ = _service(store, clock, poet_reply())

    result = await service.evolve_poet()

    assert result.err is None
    assert result.ok.cycle_number == 1
    assert result.ok.title == "Ashtray Sonnet"
    assert result.ok.created_at == 1000
    assert result.to_dict()["Ok"]["title"] == "Ashtray Sonnet"
    assert service.get_current_poem() == result.ok
    assert service.get_poem_by_cycle(1) == result.ok
    assert service.get_all_poems() == [result.ok]
    assert service.is_poet_initialized() is True
    assert service.get_poem_count() == 1


@pytest.mark.asyncio
async def test_evolve_poet_err(store, clock):
    service, _ = _service(store, clock, failure("HTTP 500: boom"))

    result = await service.evolve_poet()

    assert result.ok is None
    assert "boom" in result.err
    assert result.to_dict() == {"Err": result.err}
    assert service.get_poet_state() is None
    assert service.is_poet_initialized() is False
    assert service.get_poem_count() == 0


@pytest.mark.asyncio
async def test_reset_poet(store, clock):
    service, _ = _service(store, clock, poet_reply())
    assert await service.reset_poet() is False

    await service.evolve_poet()
    assert await service.reset_poet() is True
    assert service.get_poet_state() is None
    assert service.get_all_poems() == []


@pytest.mark.asyncio
async def test_set_next_prompt_and_raw_response(store, clock):
    service, _ = _service(store, clock, poet_reply())
    assert service.set_next_prompt("write about fog") is False

    await service.evolve_poet()
    assert service.set_next_prompt("  write about fog  ") is True
    assert service.get_current_poem().next_prompt == "write about fog"
    assert service.get_raw_response(1) == poet_reply()
    assert service.get_raw_response(2) is None

    with pytest.raises(InvalidRequest):
        service.set_next_prompt("")


@pytest.mark.asyncio
async def test_generation_stats(store, clock):
    service, _ = _service(store, clock, poet_reply())
    await service.evolve_poet()
    await service.evolve_poet()
    assert service.get_generation_stats() == {
        "total_poems": 2,
        "primary_success": 2,
        "fallback_used": 0,
        "correction_used": 0,
    }


def test_evolve_result_to_dict():
    cycle = PoemCycle(1, 1, "t", "p", "n", 5, None)
    assert EvolveResult(ok=cycle).to_dict() == {"Ok": cycle.to_dict()}
    assert EvolveResult(err="nope").to_dict() == {"Err": "nope"}


def test_build_service(tmp_path):
    cfg = {
        "backend": {"url": "http://fake", "model": "m", "max_retries": 0},
        "storage": {"sqlite_path": str(tmp_path / "svc.db")},
        "chat": {"max_tool_rounds": 3},
        "tools": {"datetime": {"enabled": False}},
        "poet": {"scoring": {"enabled": False}},
    }
    service = build_service(cfg)
    assert service.orchestrator.model == "m"
    assert service.orchestrator.max_tool_rounds == 3
    assert service.orchestrator.tool_registry.list_tools() == ["calculator"]
    assert service.engine.scorer is None
    assert service.get_conversations() == []


# ---------------------------------------------------------------------------
# Concurrency between evolve and reset
# ---------------------------------------------------------------------------

def _gated_service(store, clock):
    backend = GatedBackend(poet_reply())
    orch = ChatOrchestrator(backend, ToolRegistry({}))
    return PoetLoopService(store, orch, PoetEngine(store, orch), clock=clock), backend


async def _two_cycles(service, backend):
    backend.gate.set()
    await service.evolve_poet()
    await service.evolve_poet()
    backend.gate.clear()
    backend.entered.clear()


@pytest.mark.asyncio
async def test_reset_waits_for_inflight_evolution(store, clock):
    service, backend = _gated_service(store, clock)
    await _two_cycles(service, backend)

    evolving = asyncio.create_task(service.evolve_poet())
    await backend.entered.wait()
    resetting = asyncio.create_task(service.reset_poet())
    await asyncio.sleep(0)
    assert not resetting.done()

    backend.gate.set()
    assert (await evolving).ok.cycle_number == 3
    assert await resetting is True
    assert service.get_poet_state() is None
    assert service.get_all_poems() == []

    restarted = await service.evolve_poet()
    assert restarted.ok.cycle_number == 1
    state = service.get_poet_state()
    assert state.current_cycle == 1
    assert state.total_poems == 1


@pytest.mark.asyncio
async def test_reset_from_another_process_aborts_inflight_commit(store, clock):
    service, backend = _gated_service(store, clock)
    await _two_cycles(service, backend)

    evolving = asyncio.create_task(service.evolve_poet())
    await backend.entered.wait()
    # Same database, different writer: the facade lock does not cover it.
    store.reset()
    backend.gate.set()

    result = await evolving
    assert result.ok is None
    assert "cycle 2 to 0" in result.err
    assert service.get_poet_state() is None
    assert service.get_all_poems() == []
    assert (await service.evolve_poet()).ok.cycle_number == 1


# ---------------------------------------------------------------------------
# Stored transcript contents and backend status
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_chat_with_storage_skips_orphan_tool_replies(store, clock):
    service, backend = _service(store, clock, "ok")
    conv_id, _ = await service.chat_with_storage(
        None, [_user("hello"), {"tool": {"content": "stray", "tool_call_id": "ghost"}}]
    )
    stored = service.get_conversation_messages(conv_id)
    assert [m.role for m in stored] == ["user", "assistant"]
    assert service.get_conversation_with_messages(conv_id).conversation.message_count == 2


@pytest.mark.asyncio
async def test_chat_with_storage_only_orphans_is_rejected(store, clock):
    service, backend = _service(store, clock, "ok")
    with pytest.raises(InvalidRequest):
        await service.chat_with_storage(None, [{"tool": {"content": "stray", "tool_call_id": "ghost"}}])
    assert backend.bodies == []
    assert service.get_conversations() == []


@pytest.mark.asyncio
async def test_backend_status(store, clock):
    service, _ = _service(store, clock, "x")
    status = await service.backend_status()
    assert status["name"] == "stub"
    assert status["healthy"] is True
    assert status["models"] == []


@pytest.mark.asyncio
async def test_backend_status_unreachable_skips_models(store, clock):
    class DownBackend(ScriptedBackend):
        async def health_check(self):
            return False

        async def list_models(self):
            raise AssertionError("models should not be listed")

    orch = ChatOrchestrator(DownBackend("x"), ToolRegistry({}), model="llama3.1:8b")
    service = PoetLoopService(store, orch, PoetEngine(store, orch), clock=clock)
    status = await service.backend_status()
    assert status == {
        "name": "stub",
        "url": "http://stub",
        "model": "llama3.1:8b",
        "healthy": False,
        "models": [],
    }
