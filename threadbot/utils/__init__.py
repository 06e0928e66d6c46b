"""Utility helpers for threadbot."""

from threadbot.utils.helpers import ensure_dir, truncate_text

__all__ = ["ensure_dir", "truncate_text"]
