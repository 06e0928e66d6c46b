"""Backend and media providers for threadbot."""

from threadbot.providers.assistant import OpenAIAssistantClient
from threadbot.providers.base import AssistantBackend, RunInfo, ThreadMessage
from threadbot.providers.media import GroqTranscriptionProvider, MediaPipeline, VisionProvider

__all__ = [
    "AssistantBackend",
    "RunInfo",
    "ThreadMessage",
    "OpenAIAssistantClient",
    "GroqTranscriptionProvider",
    "VisionProvider",
    "MediaPipeline",
]
