"""Conversation orchestrator: one logical inbound message in, one reply out."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from loguru import logger

from threadbot.agent.sanitizer import DEFAULT_BRACKETS, CitationBrackets, clean_reply
from threadbot.bus.events import InboundPayload
from threadbot.errors import EmptyReply
from threadbot.utils.helpers import truncate_text

if TYPE_CHECKING:
    from threadbot.agent.knowledge import KnowledgeBase
    from threadbot.agent.run_driver import RunDriver
    from threadbot.audit.logger import ConversationLogger
    from threadbot.config.schema import ConversationConfig
    from threadbot.providers.base import AssistantBackend
    from threadbot.providers.media import MediaPipeline
    from threadbot.session.store import SessionStore


MEDIA_LABELS = {
    "image": "uma imagem",
    "sticker": "uma figurinha",
    "audio": "um áudio",
    "voice": "uma mensagem de voz",
    "ptt": "uma mensagem de voz",
    "document": "um documento",
    "pdf": "um documento PDF",
    "video": "um vídeo",
}

HELP_TEXT = (
    "*Comandos disponíveis:*\n"
    "/ajuda - Exibe esta mensagem de ajuda\n"
    "/limpar - Limpa o histórico da conversa\n"
    "/status - Verifica o status do sistema"
)
CLEARED_TEXT = "Histórico da conversa foi limpo."
UNKNOWN_COMMAND_TEXT = "Comando não reconhecido. Digite /ajuda para ver os comandos disponíveis."


@dataclass
class OrchestratorStats:
    """Counters for the /status command."""

    started_at: float = field(default_factory=time.monotonic)
    turns: int = 0
    failures: int = 0

    @property
    def uptime_minutes(self) -> int:
        return int((time.monotonic() - self.started_at) // 60)


class ConversationOrchestrator:
    """
    Composes the session store, run driver and sanitizer into single turns.

    ``handle_turn`` never raises. Any failure resets the user's session and
    yields the configured apology, so the next message starts on a fresh
    thread.
    """

    def __init__(
        self,
        store: "SessionStore",
        driver: "RunDriver",
        backend: "AssistantBackend",
        config: "ConversationConfig | None" = None,
        media: "MediaPipeline | None" = None,
        knowledge: "KnowledgeBase | None" = None,
        knowledge_template: str = "\n\n{context}",
        conversation_log: "ConversationLogger | None" = None,
        brackets: CitationBrackets = DEFAULT_BRACKETS,
    ):
        from threadbot.config.schema import ConversationConfig

        self.store = store
        self.driver = driver
        self.backend = backend
        self.config = config or ConversationConfig()
        self.media = media
        self.knowledge = knowledge
        self.knowledge_template = knowledge_template
        self.conversation_log = conversation_log
        self.brackets = brackets
        self.stats = OrchestratorStats()

    @property
    def apology(self) -> str:
        return self.config.apology

    async def handle_payload(self, user_id: str, payload: InboundPayload) -> str:
        """Entry point for the inbound queue."""
        started = time.monotonic()
        if payload.kind == "text":
            return await self.handle_turn(user_id, payload.content, started=started)

        media_type = payload.media_type or "media"
        try:
            text = await self._media_text(payload)
        except Exception as e:
            elapsed = time.monotonic() - started
            logger.error(f"Media processing failed for {user_id} ({media_type}) after {elapsed:.1f}s: {e}")
            self.stats.failures += 1
            is_first = self.store.is_first_interaction(user_id)
            self.store.remove(user_id)
            self._log_turn(
                user_id, payload.content or f"[{media_type}]", self.apology, elapsed, ok=False,
                media_type=media_type, first_interaction=is_first, error=f"{type(e).__name__}: {e}",
            )
            return self.apology
        return await self.handle_turn(user_id, text, media_type=media_type, started=started)

    async def _media_text(self, payload: InboundPayload) -> str:
        media_type = str(payload.media_type or "file").lower()
        description = ""
        if self.media is not None and payload.media_path:
            description = (await self.media.describe(payload.media_path, media_type)).strip()
        if not description:
            description = f"[{media_type}: conteúdo indisponível]"

        caption = payload.content.strip()
        if not self.config.wrap_media:
            return f"{caption}\n\n{description}".strip() if caption else description

        text = self.config.media_template.format(
            media_label=MEDIA_LABELS.get(media_type, "um arquivo"),
            media_type=media_type,
            content=description,
        )
        if caption:
            text += f"\n\nMensagem do usuário junto com o arquivo: {caption}"
        return text

    def frame(self, text: str, is_first: bool) -> str:
        """Prefix text with first-interaction or continuation framing."""
        template = (
            self.config.first_interaction_template if is_first else self.config.continuation_template
        )
        framed = template.format(text=text, bot_name=self.config.bot_name)
        if self.knowledge is not None and len(self.knowledge):
            context = self.knowledge.search(text)
            if context:
                framed += self.knowledge_template.format(context=context)
        return framed

    def _handle_command(self, user_id: str, text: str) -> str | None:
        stripped = (text or "").strip()
        if not self.config.commands_enabled or not stripped.startswith("/"):
            return None
        command = stripped.split(maxsplit=1)[0].lower()

        if command in {"/ajuda", "/help"}:
            return HELP_TEXT
        if command in {"/limpar", "/clear", "/reset"}:
            self.store.remove(user_id)
            return CLEARED_TEXT
        if command == "/status":
            return (
                "*Status do Sistema:*\n"
                "- Bot: Ativo\n"
                f"- Sessões ativas: {len(self.store)}\n"
                f"- Conversas processadas: {self.stats.turns}\n"
                f"- Uptime: {self.stats.uptime_minutes} minutos"
            )
        return UNKNOWN_COMMAND_TEXT

    async def handle_turn(
        self,
        user_id: str,
        text: str,
        media_type: str | None = None,
        started: float | None = None,
    ) -> str:
        """
        Process one logical message and return the text to send back.

        Never raises; failures return the apology string after removing the
        user's session.
        """
        if started is None:
            started = time.monotonic()

        command_reply = self._handle_command(user_id, text) if media_type is None else None
        if command_reply is not None:
            logger.info(f"Command from {user_id}: {truncate_text(text, 30)}")
            return command_reply

        is_first = self.store.is_first_interaction(user_id)
        try:
            session_id = self.store.get(user_id)
            if session_id is None:
                session_id = self.store.set(user_id, await self.backend.create_thread())
                logger.info(f"Created session {session_id} for {user_id}")
            else:
                self.store.touch(user_id)

            framed = self.frame(text, is_first)
            raw = await self.driver.execute(session_id, framed)
            reply = clean_reply(raw, brackets=self.brackets)
            if not reply:
                raise EmptyReply("Reply was empty after sanitizing")
        except Exception as e:
            elapsed = time.monotonic() - started
            logger.error(
                f"Turn failed for {user_id} after {elapsed:.1f}s "
                f"({type(e).__name__}: {e}); input: {truncate_text(text, self.config.log_input_chars)}"
            )
            self.stats.failures += 1
            self.store.remove(user_id)
            self._log_turn(
                user_id, text, self.apology, elapsed, ok=False,
                media_type=media_type, first_interaction=is_first, error=f"{type(e).__name__}: {e}",
            )
            return self.apology

        elapsed = time.monotonic() - started
        self.stats.turns += 1
        logger.info(
            f"Reply for {user_id} in {elapsed:.1f}s "
            f"({'first' if is_first else 'continuing'}, {media_type or 'text'})"
        )
        self._log_turn(user_id, text, reply, elapsed, media_type=media_type, first_interaction=is_first)
        return reply

    def _log_turn(
        self,
        user_id: str,
        text: str,
        reply: str,
        elapsed_s: float,
        ok: bool = True,
        media_type: str | None = None,
        first_interaction: bool = False,
        error: str | None = None,
    ) -> None:
        if self.conversation_log is None:
            return
        self.conversation_log.log_turn(
            user=user_id,
            input_text=text,
            reply=reply,
            duration_ms=elapsed_s * 1000.0,
            ok=ok,
            media_type=media_type,
            first_interaction=first_interaction,
            error=error,
        )
