"""threadbot - chat relay for hosted assistant threads."""

__version__ = "0.3.0"
__logo__ = "🧵"
