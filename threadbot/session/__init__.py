"""Session registry module for threadbot."""

from threadbot.session.store import Session, SessionStore, is_valid_session_id, parse_session_id

__all__ = ["SessionStore", "Session", "parse_session_id", "is_valid_session_id"]
