"""Small filesystem and text helpers."""

from pathlib import Path


def ensure_dir(path: Path) -> Path:
    """Create a directory (and parents) if missing and return it."""
    path = Path(path).expanduser()
    path.mkdir(parents=True, exist_ok=True)
    return path


def truncate_text(text: str | None, max_len: int = 100) -> str:
    """Shorten text for log lines."""
    if not text:
        return ""
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."
