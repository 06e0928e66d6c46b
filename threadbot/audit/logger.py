"""Conversation log: one JSON line per processed turn."""

import json
import re
import time
from pathlib import Path
from typing import Any

from loguru import logger


class ConversationLogger:
    """Structured JSON-lines conversation logger."""

    _INLINE_SECRET_PATTERNS = (
        re.compile(r"(?i)\b(api[_-]?key|token|secret|password|senha)\b\s*[:=]\s*([^\s,;]+)"),
        re.compile(r"(?i)\bsk-[a-z0-9_-]{16,}"),
    )

    def __init__(self, log_path: Path, max_text_len: int = 500):
        self.log_path = Path(log_path).expanduser()
        self.max_text_len = max_text_len
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def _write(self, entry: dict[str, Any]) -> None:
        entry["ts"] = time.time()
        try:
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        except Exception as e:
            logger.warning(f"Conversation log write failed: {e}")

    @classmethod
    def _mask_sensitive_text(cls, text: str) -> str:
        out = cls._INLINE_SECRET_PATTERNS[0].sub(lambda m: f"{m.group(1)}=<redacted>", text)
        return cls._INLINE_SECRET_PATTERNS[1].sub("<redacted>", out)

    def _clip(self, text: str | None) -> str:
        value = self._mask_sensitive_text(text or "")
        if len(value) > self.max_text_len:
            return value[: self.max_text_len] + f"... (truncated, {len(value) - self.max_text_len} more chars)"
        return value

    def log_turn(
        self,
        user: str,
        input_text: str,
        reply: str,
        duration_ms: float,
        ok: bool = True,
        media_type: str | None = None,
        first_interaction: bool = False,
        error: str | None = None,
    ) -> None:
        """Record one processed turn."""
        entry: dict[str, Any] = {
            "type": "turn",
            "user": user,
            "input": self._clip(input_text),
            "reply": self._clip(reply),
            "ok": ok,
            "ms": round(duration_ms, 1),
            "media_type": media_type or "text",
            "first_interaction": first_interaction,
        }
        if error:
            entry["error"] = self._clip(error)
        self._write(entry)

    def log_event(self, event: str, data: dict[str, Any] | None = None) -> None:
        """Log a generic event."""
        entry: dict[str, Any] = {"type": "event", "event": event}
        if data:
            entry["data"] = data
        self._write(entry)

    def load_recent(self, limit: int = 20) -> list[dict[str, Any]]:
        """Return the newest entries first."""
        limit = max(1, min(1000, int(limit)))
        if not self.log_path.exists():
            return []
        try:
            lines = self.log_path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            logger.warning(f"Failed reading conversation log: {e}")
            return []
        rows: list[dict[str, Any]] = []
        for line in reversed(lines):
            if not line.strip():
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(obj, dict):
                rows.append(obj)
            if len(rows) >= limit:
                break
        return rows
