import asyncio
from pathlib import Path

import pytest

from threadbot.agent.knowledge import KnowledgeBase, KnowledgeItem
from threadbot.agent.orchestrator import CLEARED_TEXT, HELP_TEXT, UNKNOWN_COMMAND_TEXT, ConversationOrchestrator
from threadbot.agent.run_driver import RunDriver
from threadbot.audit.logger import ConversationLogger
from threadbot.bus.events import InboundPayload
from threadbot.config.schema import DEFAULT_APOLOGY, ConversationConfig
from threadbot.providers.base import AssistantBackend, RunInfo, ThreadMessage
from threadbot.session.store import SessionStore

USER = "5511999990000@s.whatsapp.net"
THREAD_1 = "thread_first000000001"
THREAD_2 = "thread_second00000002"


class FakeAssistant(AssistantBackend):
    """In-memory thread/run backend."""

    def __init__(self, thread_ids=(THREAD_1, THREAD_2), reply="Tudo certo【1:0†faq.md】") -> None:
        self.thread_ids = list(thread_ids)
        self.reply = reply
        self.run_status = "completed"
        self.calls: list[tuple] = []
        self.messages: dict[str, list[str]] = {}

    async def create_thread(self):
        self.calls.append(("create_thread",))
        return self.thread_ids.pop(0)

    async def add_message(self, thread_id: str, text: str) -> str:
        self.calls.append(("add_message", thread_id))
        self.messages.setdefault(thread_id, []).append(text)
        return f"msg_{len(self.calls)}"

    async def create_run(self, thread_id: str) -> RunInfo:
        self.calls.append(("create_run", thread_id))
        return RunInfo(id="run_1", thread_id=thread_id, status="queued")

    async def retrieve_run(self, thread_id: str, run_id: str) -> RunInfo:
        self.calls.append(("retrieve_run", thread_id))
        return RunInfo(id=run_id, thread_id=thread_id, status=self.run_status)

    async def list_messages(self, thread_id: str, limit: int = 1) -> list[ThreadMessage]:
        self.calls.append(("list_messages", thread_id))
        return [ThreadMessage(id="msg_reply", role="assistant", text=self.reply)]


class _FakeMedia:
    def __init__(self, description: str = "", error: Exception | None = None) -> None:
        self.description = description
        self.error = error
        self.seen: list[tuple] = []

    async def describe(self, file_path, media_type):
        self.seen.append((str(file_path), media_type))
        if self.error is not None:
            raise self.error
        return self.description


async def _no_sleep(_delay: float) -> None:
    return None


def _make(tmp_path: Path, backend: FakeAssistant, **kwargs) -> ConversationOrchestrator:
    store = SessionStore(tmp_path / "sessions.json")
    driver = RunDriver(backend, poll_interval_s=0, max_attempts=3, sleep=_no_sleep)
    return ConversationOrchestrator(store=store, driver=driver, backend=backend, **kwargs)


async def test_first_and_follow_up_turns_share_one_thread(tmp_path: Path) -> None:
    backend = FakeAssistant()
    orchestrator = _make(tmp_path, backend)
    config = ConversationConfig()

    first = await orchestrator.handle_turn(USER, "Hello")
    second = await orchestrator.handle_turn(USER, "How are you?")

    assert first == "Tudo certo"
    assert second == "Tudo certo"
    assert backend.calls.count(("create_thread",)) == 1
    assert orchestrator.store.get(USER) == THREAD_1
    assert backend.messages[THREAD_1] == [
        config.first_interaction_template.format(text="Hello"),
        config.continuation_template.format(text="How are you?"),
    ]
    assert orchestrator.stats.turns == 2


async def test_failed_run_resets_session_and_returns_apology(tmp_path: Path) -> None:
    backend = FakeAssistant()
    orchestrator = _make(tmp_path, backend)
    await orchestrator.handle_turn(USER, "Hello")

    backend.run_status = "failed"
    reply = await orchestrator.handle_turn(USER, "Still there?")

    assert reply == DEFAULT_APOLOGY
    assert orchestrator.store.get(USER) is None
    assert orchestrator.stats.failures == 1

    backend.run_status = "completed"
    await orchestrator.handle_turn(USER, "Hello again")

    assert orchestrator.store.get(USER) == THREAD_2
    assert backend.messages[THREAD_2] == [ConversationConfig().first_interaction_template.format(text="Hello again")]


async def test_malformed_thread_id_from_backend_is_never_stored(tmp_path: Path) -> None:
    backend = FakeAssistant(thread_ids=["[object Object]"])
    orchestrator = _make(tmp_path, backend)

    reply = await orchestrator.handle_turn(USER, "Hello")

    assert reply == DEFAULT_APOLOGY
    assert orchestrator.store.get(USER) is None
    assert backend.calls == [("create_thread",)]


async def test_empty_reply_after_sanitizing_is_a_failure(tmp_path: Path) -> None:
    backend = FakeAssistant(reply="【4:0†source】")
    orchestrator = _make(tmp_path, backend, config=ConversationConfig(apology="Ops"))

    assert await orchestrator.handle_turn(USER, "Hello") == "Ops"
    assert orchestrator.store.get(USER) is None


@pytest.mark.parametrize("command, expected", [("/ajuda", HELP_TEXT), ("/help", HELP_TEXT), ("/foo", UNKNOWN_COMMAND_TEXT)])
async def test_commands_are_answered_locally(tmp_path: Path, command: str, expected: str) -> None:
    backend = FakeAssistant()
    orchestrator = _make(tmp_path, backend)

    assert await orchestrator.handle_turn(USER, command) == expected
    assert backend.calls == []


async def test_clear_command_forgets_the_thread(tmp_path: Path) -> None:
    backend = FakeAssistant()
    orchestrator = _make(tmp_path, backend)
    await orchestrator.handle_turn(USER, "Hello")
    calls_before = len(backend.calls)

    assert await orchestrator.handle_turn(USER, "/limpar") == CLEARED_TEXT
    assert orchestrator.store.get(USER) is None
    assert len(backend.calls) == calls_before


async def test_status_command_reports_counters(tmp_path: Path) -> None:
    backend = FakeAssistant()
    orchestrator = _make(tmp_path, backend)
    await orchestrator.handle_turn(USER, "Hello")

    reply = await orchestrator.handle_turn("other@s.whatsapp.net", "/status")

    assert "Sessões ativas: 1" in reply
    assert "Conversas processadas: 1" in reply


async def test_commands_can_be_disabled(tmp_path: Path) -> None:
    backend = FakeAssistant()
    orchestrator = _make(tmp_path, backend, config=ConversationConfig(commands_enabled=False))

    assert await orchestrator.handle_turn(USER, "/ajuda") == "Tudo certo"
    assert ("create_thread",) in backend.calls


async def test_media_payload_is_described_and_framed(tmp_path: Path) -> None:
    backend = FakeAssistant()
    media = _FakeMedia(description="Um gato laranja dormindo no sofá.")
    orchestrator = _make(tmp_path, backend, media=media)

    payload = InboundPayload.media("image", media_path="/tmp/cat.jpg", content="Que raça é?")
    reply = await orchestrator.handle_payload(USER, payload)

    assert reply == "Tudo certo"
    assert media.seen == [("/tmp/cat.jpg", "image")]
    sent = backend.messages[THREAD_1][0]
    assert "uma imagem" in sent
    assert "Um gato laranja dormindo no sofá." in sent
    assert "Que raça é?" in sent


async def test_media_without_description_uses_placeholder(tmp_path: Path) -> None:
    backend = FakeAssistant()
    orchestrator = _make(tmp_path, backend, config=ConversationConfig(wrap_media=False))

    await orchestrator.handle_payload(USER, InboundPayload.media("video", media_path="/tmp/clip.mp4"))

    assert "[video: conteúdo indisponível]" in backend.messages[THREAD_1][0]


async def test_media_failure_resets_session(tmp_path: Path) -> None:
    backend = FakeAssistant()
    orchestrator = _make(tmp_path, backend, media=_FakeMedia(error=RuntimeError("decoder crashed")))
    await orchestrator.handle_turn(USER, "Hello")

    reply = await orchestrator.handle_payload(USER, InboundPayload.media("audio", media_path="/tmp/a.ogg"))

    assert reply == DEFAULT_APOLOGY
    assert orchestrator.store.get(USER) is None


async def test_media_payload_skips_command_handling(tmp_path: Path) -> None:
    backend = FakeAssistant()
    orchestrator = _make(tmp_path, backend, config=ConversationConfig(wrap_media=False))

    reply = await orchestrator.handle_payload(USER, InboundPayload.media("document", content="/limpar"))

    assert reply == "Tudo certo"
    assert ("create_thread",) in backend.calls


def test_frame_appends_knowledge_context(tmp_path: Path) -> None:
    knowledge = KnowledgeBase()
    knowledge.items.append(KnowledgeItem(source="horarios.txt", text="Abrimos às 9h de segunda a sexta.", type="text"))
    orchestrator = _make(
        tmp_path,
        FakeAssistant(),
        config=ConversationConfig(continuation_template="{text}"),
        knowledge=knowledge,
        knowledge_template="\n\nCONTEXTO:\n{context}",
    )

    assert orchestrator.frame("Vocês abrem segunda", is_first=False) == (
        "Vocês abrem segunda\n\nCONTEXTO:\nAbrimos às 9h de segunda a sexta."
    )
    assert orchestrator.frame("Oi", is_first=False) == "Oi"


async def test_turns_are_written_to_conversation_log(tmp_path: Path) -> None:
    backend = FakeAssistant()
    log = ConversationLogger(tmp_path / "logs" / "conversations.jsonl")
    orchestrator = _make(tmp_path, backend, conversation_log=log)

    await orchestrator.handle_turn(USER, "Hello")
    backend.run_status = "expired"
    await orchestrator.handle_turn(USER, "Again")

    newest, oldest = log.load_recent(limit=2)
    assert oldest["ok"] is True
    assert oldest["first_interaction"] is True
    assert oldest["reply"] == "Tudo certo"
    assert newest["ok"] is False
    assert "RunFailed" in newest["error"]
    assert newest["reply"] == DEFAULT_APOLOGY


class _SlowMedia(_FakeMedia):
    async def describe(self, file_path, media_type):
        await asyncio.sleep(0.05)
        return await super().describe(file_path, media_type)


async def test_media_failure_is_written_to_conversation_log(tmp_path: Path) -> None:
    log = ConversationLogger(tmp_path / "conversations.jsonl")
    orchestrator = _make(
        tmp_path,
        FakeAssistant(),
        media=_FakeMedia(error=RuntimeError("decoder crashed")),
        conversation_log=log,
    )

    reply = await orchestrator.handle_payload(USER, InboundPayload.media("audio", media_path="/tmp/a.ogg"))

    assert reply == DEFAULT_APOLOGY
    (entry,) = log.load_recent(limit=5)
    assert entry["ok"] is False
    assert entry["media_type"] == "audio"
    assert entry["error"] == "RuntimeError: decoder crashed"
    assert orchestrator.stats.failures == 1


async def test_media_turn_latency_includes_description_time(tmp_path: Path) -> None:
    log = ConversationLogger(tmp_path / "conversations.jsonl")
    orchestrator = _make(tmp_path, FakeAssistant(), media=_SlowMedia(description="Um recibo."), conversation_log=log)

    await orchestrator.handle_payload(USER, InboundPayload.media("image", media_path="/tmp/r.jpg"))

    (entry,) = log.load_recent(limit=5)
    assert entry["ok"] is True
    assert entry["ms"] >= 40
