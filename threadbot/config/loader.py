"""Configuration loading utilities for threadbot."""

import json
from pathlib import Path
from typing import Any

from loguru import logger

from threadbot.config.schema import Config


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".threadbot" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file or create default.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object.
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            data = _migrate_config(data)
            return Config.model_validate(convert_keys(data))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}; using default configuration")

    return Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """
    Save configuration to file.

    Args:
        config: Configuration to save.
        config_path: Optional path to save to. Uses default if not provided.
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    # Convert to camelCase format
    data = config.model_dump()
    data = convert_to_camel(data)

    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def _migrate_config(data: dict) -> dict:
    """Migrate old config formats to current."""
    if not isinstance(data, dict):
        return {}

    # Flat legacy keys (openaiApiKey / assistantId) move under "assistant".
    assistant = data.setdefault("assistant", {})
    if not isinstance(assistant, dict):
        assistant = {}
        data["assistant"] = assistant
    if "openaiApiKey" in data:
        assistant.setdefault("apiKey", data.pop("openaiApiKey"))
    if "assistantId" in data:
        assistant.setdefault("assistantId", data.pop("assistantId"))
    assistant.setdefault("pollIntervalS", 1.0)
    assistant.setdefault("maxAttempts", 30)

    queue = data.setdefault("queue", {})
    if isinstance(queue, dict):
        # Older configs stored the debounce window in milliseconds.
        if "debounceMs" in queue and "debounceS" not in queue:
            try:
                queue["debounceS"] = float(queue.pop("debounceMs")) / 1000.0
            except (TypeError, ValueError):
                queue.pop("debounceMs", None)
        queue.setdefault("debounceS", 2.0)
        queue.setdefault("mediaGapS", 0.5)

    channels = data.setdefault("channels", {})
    if isinstance(channels, dict):
        whatsapp = channels.setdefault("whatsapp", {})
        if isinstance(whatsapp, dict):
            whatsapp.setdefault("bridgeUrl", "ws://127.0.0.1:3001")
            whatsapp.setdefault("bridgeAuthToken", "")
            whatsapp.setdefault("allowFrom", [])
            whatsapp.setdefault("allowGroups", False)

    knowledge = data.setdefault("knowledge", {})
    if isinstance(knowledge, dict):
        if "customContentPath" in data:
            knowledge.setdefault("path", data.pop("customContentPath"))
            knowledge.setdefault("enabled", True)
        knowledge.setdefault("enabled", False)

    logging_cfg = data.setdefault("logging", {})
    if isinstance(logging_cfg, dict):
        logging_cfg.setdefault("level", "INFO")
        logging_cfg.setdefault("conversationLog", True)
    return data


def convert_keys(data: Any) -> Any:
    """Convert camelCase keys to snake_case for Pydantic."""
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """Convert snake_case keys to camelCase."""
    if isinstance(data, dict):
        return {snake_to_camel(k): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def snake_to_camel(name: str) -> str:
    """Convert snake_case to camelCase."""
    components = name.split("_")
    return components[0] + "".join(x.title() for x in components[1:])
