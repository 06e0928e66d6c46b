"""Local knowledge base searched by keyword and attached to turns."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from threadbot.providers.media import extract_pdf_text


@dataclass
class KnowledgeItem:
    source: str
    text: str
    type: str
    metadata: dict[str, Any] = field(default_factory=dict)


class KnowledgeBase:
    """
    Plain-text snippets loaded from a content directory.

    Supports ``.txt``, ``.md``, ``.json`` and ``.pdf`` files. A JSON file that
    is a list of ``{"text": ...}`` objects contributes one item per entry;
    any other JSON is stored pretty-printed as a single item.
    """

    MIN_KEYWORD_LEN = 3

    def __init__(self, max_chars: int = 4000):
        self.max_chars = max_chars
        self.items: list[KnowledgeItem] = []

    def load(self, content_path: Path) -> int:
        """Load every supported file in ``content_path``. Returns items loaded."""
        path = Path(content_path).expanduser()
        if not path.exists():
            path.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created content directory: {path}")
            return 0

        before = len(self.items)
        for file in sorted(path.iterdir()):
            if file.is_dir():
                continue
            ext = file.suffix.lower()
            try:
                if ext == ".pdf":
                    self._add(file.name, extract_pdf_text(file, max_chars=1_000_000), "pdf")
                elif ext in {".txt", ".md"}:
                    self._add(file.name, file.read_text(encoding="utf-8"), "text")
                elif ext == ".json":
                    self._load_json(file)
                else:
                    logger.info(f"Unsupported content file type: {file.name}")
            except Exception as e:
                logger.error(f"Failed to load content file {file.name}: {e}")

        loaded = len(self.items) - before
        logger.info(f"Loaded {loaded} knowledge item(s) from {path}")
        return loaded

    def _add(self, source: str, text: str, type_: str, metadata: dict[str, Any] | None = None) -> None:
        if text and text.strip():
            self.items.append(KnowledgeItem(source=source, text=text, type=type_, metadata=metadata or {}))

    def _load_json(self, file: Path) -> None:
        data = json.loads(file.read_text(encoding="utf-8"))
        if isinstance(data, list) and all(isinstance(item, dict) and isinstance(item.get("text"), str) for item in data):
            for item in data:
                self._add(file.name, item["text"], "json", item.get("metadata") or {})
        else:
            self._add(file.name, json.dumps(data, indent=2, ensure_ascii=False), "json")

    def search(self, query: str) -> str:
        """Return snippets containing any query keyword, capped at ``max_chars``."""
        keywords = [k for k in (query or "").lower().split() if len(k) >= self.MIN_KEYWORD_LEN]
        if not keywords or not self.items:
            return ""

        matches = [
            item.text for item in self.items
            if any(keyword in item.text.lower() for keyword in keywords)
        ]
        joined = "\n\n".join(matches)
        if len(joined) > self.max_chars:
            return joined[: self.max_chars] + "..."
        return joined

    def __len__(self) -> int:
        return len(self.items)
