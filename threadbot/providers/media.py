"""Media pipeline: audio transcription, image description and document text."""

from __future__ import annotations

import asyncio
import base64
import mimetypes
import os
from pathlib import Path

import httpx
from loguru import logger

AUDIO_TYPES = {"audio", "voice", "ptt"}
IMAGE_TYPES = {"image", "sticker"}
DOCUMENT_TYPES = {"document", "pdf"}


class GroqTranscriptionProvider:
    """Groq Whisper transcription provider."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "whisper-large-v3",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key or os.environ.get("GROQ_API_KEY")
        self.model = model
        self.api_url = "https://api.groq.com/openai/v1/audio/transcriptions"
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def transcribe(self, file_path: str | Path) -> str:
        if not self.api_key:
            logger.warning("Groq API key not configured for transcription")
            return ""

        path = Path(file_path)
        if not path.exists():
            logger.error(f"Audio file not found: {file_path}")
            return ""

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                with open(path, "rb") as f:
                    files = {
                        "file": (path.name, f),
                        "model": (None, self.model),
                    }
                    headers = {
                        "Authorization": f"Bearer {self.api_key}",
                    }

                    response = await client.post(
                        self.api_url,
                        headers=headers,
                        files=files,
                        timeout=60.0,
                    )

                    response.raise_for_status()
                    data = response.json()
                    return str(data.get("text") or "").strip()

        except Exception as e:
            logger.error(f"Groq transcription error: {e}")
            return ""


class VisionProvider:
    """Describes images through an OpenAI-compatible chat completion endpoint."""

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        prompt: str = "Describe this image in detail, including any visible text.",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self.api_url = f"{api_base.rstrip('/')}/chat/completions"
        self.model = model
        self.prompt = prompt
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def describe(self, file_path: str | Path) -> str:
        if not self.api_key:
            logger.warning("API key not configured for image description")
            return ""

        path = Path(file_path)
        if not path.exists():
            logger.error(f"Image file not found: {file_path}")
            return ""

        mime = mimetypes.guess_type(path.name)[0] or "image/jpeg"
        encoded = base64.b64encode(path.read_bytes()).decode("ascii")
        body = {
            "model": self.model,
            "max_tokens": 500,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": self.prompt},
                        {"type": "image_url", "image_url": {"url": f"data:{mime};base64,{encoded}"}},
                    ],
                }
            ],
        }
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=body,
                    timeout=60.0,
                )
                response.raise_for_status()
                data = response.json()
            choices = data.get("choices") or []
            if not choices:
                return ""
            return str((choices[0].get("message") or {}).get("content") or "").strip()
        except Exception as e:
            logger.error(f"Image description error: {e}")
            return ""


def extract_pdf_text(file_path: str | Path, max_chars: int = 4000) -> str:
    """Extract plain text from a PDF, truncated to ``max_chars``."""
    from pypdf import PdfReader

    reader = PdfReader(str(file_path))
    extracted = []
    for page in reader.pages:
        text = page.extract_text() or ""
        if text:
            extracted.append(text)
    pdf_text = "\n".join(extracted).strip()
    if len(pdf_text) > max_chars:
        return pdf_text[:max_chars] + "..."
    return pdf_text


class MediaPipeline:
    """Turns a media file into text the assistant can reason about."""

    def __init__(
        self,
        transcriber: GroqTranscriptionProvider | None = None,
        vision: VisionProvider | None = None,
        max_document_chars: int = 4000,
    ):
        self.transcriber = transcriber
        self.vision = vision
        self.max_document_chars = max_document_chars

    async def describe(self, file_path: str | Path, media_type: str | None) -> str:
        """
        Return text for a media file, or "" when nothing could be extracted.

        Args:
            file_path: Local path of the downloaded media.
            media_type: Transport media tag (image, audio, voice, document, ...).
        """
        kind = str(media_type or "").lower()
        path = Path(file_path)

        if kind in AUDIO_TYPES:
            if self.transcriber is None:
                return ""
            return await self.transcriber.transcribe(path)

        if kind in IMAGE_TYPES:
            if self.vision is None:
                return ""
            return await self.vision.describe(path)

        if kind in DOCUMENT_TYPES or path.suffix.lower() == ".pdf":
            if path.suffix.lower() != ".pdf":
                return ""
            try:
                return await asyncio.to_thread(extract_pdf_text, path, self.max_document_chars)
            except Exception as e:
                logger.warning(f"PDF text extraction failed for {path.name}: {e}")
                return ""

        logger.info(f"No media handler for type '{kind or 'unknown'}'")
        return ""

    @classmethod
    def from_config(cls, config, api_key: str | None = None, api_base: str | None = None) -> "MediaPipeline":
        groq_key = str(getattr(config, "groq_api_key", "") or "") or None
        return cls(
            transcriber=GroqTranscriptionProvider(
                api_key=groq_key,
                model=str(getattr(config, "transcription_model", "whisper-large-v3")),
            ),
            vision=VisionProvider(
                api_key=api_key,
                api_base=api_base or "https://api.openai.com/v1",
                model=str(getattr(config, "vision_model", "gpt-4o-mini")),
                prompt=str(getattr(config, "vision_prompt", "") or "Describe this image in detail."),
            ),
            max_document_chars=int(getattr(config, "max_document_chars", 4000)),
        )
