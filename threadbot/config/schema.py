"""Configuration schema using Pydantic."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_APOLOGY = (
    "Desculpe, ocorreu um erro ao processar sua mensagem. "
    "Por favor, tente novamente mais tarde."
)

DEFAULT_FIRST_INTERACTION_TEMPLATE = (
    "[Contexto: esta é a primeira mensagem deste usuário. "
    "Apresente-se brevemente antes de responder.]\n\n{text}"
)

DEFAULT_CONTINUATION_TEMPLATE = (
    "[Contexto: conversa em andamento. Não se apresente novamente "
    "e não repita saudações; responda diretamente.]\n\n{text}"
)

DEFAULT_MEDIA_TEMPLATE = (
    "O usuário enviou {media_label}. Conteúdo extraído automaticamente:\n"
    "\"\"\"\n{content}\n\"\"\"\n"
    "Use essas informações para responder de forma natural, "
    "sem mencionar que recebeu uma análise automática."
)

DEFAULT_KNOWLEDGE_TEMPLATE = "\n\nInformações relevantes para a consulta:\n{context}"


class WhatsAppConfig(BaseModel):
    """WhatsApp channel configuration."""
    enabled: bool = False
    bridge_url: str = "ws://127.0.0.1:3001"
    bridge_auth_token: str = ""
    allow_from: list[str] = Field(default_factory=list)  # Allowed phone numbers; "*" allows everyone
    allow_groups: bool = False
    reconnect_delay_s: float = Field(default=5.0, ge=0.1, le=300)


class ChannelsConfig(BaseModel):
    """Configuration for chat channels."""
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)


class AssistantConfig(BaseModel):
    """Hosted assistant backend configuration."""
    api_key: str = ""
    api_base: str = "https://api.openai.com/v1"
    assistant_id: str = ""
    request_timeout_s: float = Field(default=60.0, gt=0)
    poll_interval_s: float = Field(default=1.0, ge=0, le=30)
    max_attempts: int = Field(default=30, ge=1, le=600)


class QueueConfig(BaseModel):
    """Inbound debounce configuration."""
    debounce_s: float = Field(default=2.0, ge=0, le=60)
    media_gap_s: float = Field(default=0.5, ge=0, le=10)


class ConversationConfig(BaseModel):
    """Framing and user-facing texts."""
    bot_name: str = "Assistente IA"
    apology: str = DEFAULT_APOLOGY
    first_interaction_template: str = DEFAULT_FIRST_INTERACTION_TEMPLATE
    continuation_template: str = DEFAULT_CONTINUATION_TEMPLATE
    media_template: str = DEFAULT_MEDIA_TEMPLATE
    wrap_media: bool = True
    commands_enabled: bool = True
    log_input_chars: int = Field(default=100, ge=10, le=4000)

    @field_validator("first_interaction_template", "continuation_template")
    @classmethod
    def require_text_placeholder(cls, value: str) -> str:
        if "{text}" not in value:
            raise ValueError("framing templates must contain a {text} placeholder")
        return value

    @field_validator("media_template")
    @classmethod
    def require_content_placeholder(cls, value: str) -> str:
        if "{content}" not in value:
            raise ValueError("media template must contain a {content} placeholder")
        return value


class MediaConfig(BaseModel):
    """Media pipeline configuration (transcription, vision, documents)."""
    groq_api_key: str = ""
    transcription_model: str = "whisper-large-v3"
    vision_model: str = "gpt-4o-mini"
    vision_prompt: str = "Descreva esta imagem em detalhes, incluindo qualquer texto visível."
    max_document_chars: int = Field(default=4000, ge=100)


class KnowledgeConfig(BaseModel):
    """Local knowledge base configuration."""
    enabled: bool = False
    path: str = "~/.threadbot/content"
    max_chars: int = Field(default=4000, ge=200)
    template: str = DEFAULT_KNOWLEDGE_TEMPLATE


class LoggingConfig(BaseModel):
    """Log sinks."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    file_enabled: bool = True
    rotation: str = "10 MB"
    retention: str = "14 days"
    conversation_log: bool = True

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, value: str) -> str:
        if isinstance(value, str) and value.strip():
            return value.strip().upper()
        return "INFO"


class Config(BaseSettings):
    """Root configuration for threadbot."""

    model_config = SettingsConfigDict(env_prefix="THREADBOT_", env_nested_delimiter="__")

    data_dir: str = "~/.threadbot"
    assistant: AssistantConfig = Field(default_factory=AssistantConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    conversation: ConversationConfig = Field(default_factory=ConversationConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    media: MediaConfig = Field(default_factory=MediaConfig)
    knowledge: KnowledgeConfig = Field(default_factory=KnowledgeConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def data_path(self) -> Path:
        """Get expanded data directory path."""
        return Path(self.data_dir).expanduser()

    @property
    def sessions_path(self) -> Path:
        return self.data_path / "sessions.json"

    @property
    def conversation_log_path(self) -> Path:
        return self.data_path / "logs" / "conversations.jsonl"

    @property
    def knowledge_path(self) -> Path:
        return Path(self.knowledge.path).expanduser()
