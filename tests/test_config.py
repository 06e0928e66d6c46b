import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from threadbot.config.loader import camel_to_snake, load_config, save_config, snake_to_camel
from threadbot.config.schema import Config, ConversationConfig


def test_missing_config_file_uses_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "missing.json")

    assert config.assistant.poll_interval_s == 1.0
    assert config.assistant.max_attempts == 30
    assert config.queue.debounce_s == 2.0
    assert config.channels.whatsapp.allow_from == []


def test_legacy_flat_keys_are_migrated(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "openaiApiKey": "sk-legacy",
                "assistantId": "asst_legacy",
                "queue": {"debounceMs": 1500},
                "customContentPath": str(tmp_path / "content"),
                "logging": {"level": "debug"},
            }
        ),
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.assistant.api_key == "sk-legacy"
    assert config.assistant.assistant_id == "asst_legacy"
    assert config.queue.debounce_s == 1.5
    assert config.queue.media_gap_s == 0.5
    assert config.knowledge.enabled is True
    assert config.knowledge_path == tmp_path / "content"
    assert config.logging.level == "DEBUG"


def test_invalid_config_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{broken", encoding="utf-8")
    assert load_config(path).assistant.max_attempts == 30

    path.write_text(json.dumps({"assistant": {"maxAttempts": 0}}), encoding="utf-8")
    assert load_config(path).assistant.max_attempts == 30


def test_save_writes_camel_case_and_round_trips(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    config = Config()
    config.assistant.assistant_id = "asst_123"
    config.channels.whatsapp.allow_from = ["5511999990000"]
    config.queue.debounce_s = 3.0

    save_config(config, path)
    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["assistant"]["assistantId"] == "asst_123"
    assert raw["channels"]["whatsapp"]["allowFrom"] == ["5511999990000"]

    loaded = load_config(path)
    assert loaded.assistant.assistant_id == "asst_123"
    assert loaded.channels.whatsapp.allow_from == ["5511999990000"]
    assert loaded.queue.debounce_s == 3.0


def test_nested_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("THREADBOT_ASSISTANT__ASSISTANT_ID", "asst_env")
    monkeypatch.setenv("THREADBOT_QUEUE__DEBOUNCE_S", "0.75")

    config = Config()

    assert config.assistant.assistant_id == "asst_env"
    assert config.queue.debounce_s == 0.75


def test_data_paths_follow_data_dir(tmp_path: Path) -> None:
    config = Config(data_dir=str(tmp_path))

    assert config.sessions_path == tmp_path / "sessions.json"
    assert config.conversation_log_path == tmp_path / "logs" / "conversations.jsonl"


def test_framing_templates_require_text_placeholder() -> None:
    with pytest.raises(ValidationError):
        ConversationConfig(continuation_template="no placeholder here")
    with pytest.raises(ValidationError):
        ConversationConfig(media_template="{media_label} only")


@pytest.mark.parametrize(
    "snake, camel",
    [("poll_interval_s", "pollIntervalS"), ("bridge_auth_token", "bridgeAuthToken"), ("enabled", "enabled")],
)
def test_key_case_conversion(snake: str, camel: str) -> None:
    assert snake_to_camel(snake) == camel
    assert camel_to_snake(camel) == snake
