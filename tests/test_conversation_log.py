import json
from pathlib import Path

from threadbot.audit.logger import ConversationLogger


def test_turns_are_appended_as_json_lines(tmp_path: Path) -> None:
    path = tmp_path / "logs" / "conversations.jsonl"
    log = ConversationLogger(path)

    log.log_turn(user="alice", input_text="Oi", reply="Olá!", duration_ms=1500.0, first_interaction=True)
    log.log_turn(user="alice", input_text="foto", reply="Desculpe", duration_ms=10, ok=False, media_type="image", error="RunFailed: x")

    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [row["type"] for row in lines] == ["turn", "turn"]
    assert lines[0]["ms"] == 1500.0
    assert lines[0]["media_type"] == "text"
    assert lines[0]["first_interaction"] is True
    assert lines[1]["ok"] is False
    assert lines[1]["media_type"] == "image"
    assert lines[1]["error"] == "RunFailed: x"
    assert all("ts" in row for row in lines)


def test_secrets_are_masked_and_long_text_clipped(tmp_path: Path) -> None:
    log = ConversationLogger(tmp_path / "c.jsonl", max_text_len=40)

    log.log_turn(user="bob", input_text="minha senha: hunter2", reply="use sk-abcdefghijklmnopqrstuvwx", duration_ms=1)
    log.log_turn(user="bob", input_text="x" * 100, reply="ok", duration_ms=1)

    newest, oldest = log.load_recent(limit=5)
    assert "hunter2" not in oldest["input"]
    assert "senha=<redacted>" in oldest["input"]
    assert oldest["reply"] == "use <redacted>"
    assert newest["input"].startswith("x" * 40 + "... (truncated")


def test_load_recent_skips_garbage_and_respects_limit(tmp_path: Path) -> None:
    path = tmp_path / "c.jsonl"
    log = ConversationLogger(path)
    log.log_event("gateway_started", {"sessions": 3})
    with open(path, "a", encoding="utf-8") as f:
        f.write("not json\n\n[1, 2]\n")
    for i in range(3):
        log.log_turn(user=f"u{i}", input_text="oi", reply="olá", duration_ms=1)

    recent = log.load_recent(limit=2)
    assert [row["user"] for row in recent] == ["u2", "u1"]

    everything = log.load_recent(limit=100)
    assert everything[-1]["event"] == "gateway_started"
    assert everything[-1]["data"] == {"sessions": 3}
    assert len(everything) == 4


def test_load_recent_missing_file(tmp_path: Path) -> None:
    assert ConversationLogger(tmp_path / "nothing.jsonl").load_recent() == []
