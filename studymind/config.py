"""StudyMind configuration management using pydantic-settings."""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env from project root so ANTHROPIC_API_KEY / SUPABASE_* are available
load_dotenv(Path(__file__).resolve().parent.parent / ".env")


class GeneralSettings(BaseSettings):
    db_url: str = Field(default="postgresql+asyncpg://localhost/studymind")
    chroma_path: Path = Field(default=Path.home() / ".local/share/studymind/chroma")
    log_level: str = "INFO"


class AnthropicSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ANTHROPIC_")
    api_key: str = ""
    model: str = "claude-haiku-4-5-20251001"
    max_tokens: int = 2048


class StorageSettings(BaseSettings):
    """Object storage (Supabase Storage REST API)."""

    model_config = SettingsConfigDict(env_prefix="SUPABASE_")
    url: str = ""
    key: str = ""
    bucket: str = "studymind"


class ToolsSettings(BaseSettings):
    """External rendering tools."""

    tools_url: str = "http://localhost:8000/tools"
    image_url: str = "https://image.pollinations.ai/prompt"
    timeout_seconds: float = 120.0


class ChatSettings(BaseSettings):
    """Settings for the conversation orchestration pipeline."""

    summary_window: int = 10
    flashcard_min: int = 5
    flashcard_max: int = 10
    document_search_results: int = 5


class RawStorageSettings(BaseSettings):
    store_ai_conversations: bool = True


class Settings(BaseSettings):
    """Top-level settings assembled from subsections."""

    general: GeneralSettings = Field(default_factory=GeneralSettings)
    anthropic: AnthropicSettings = Field(default_factory=AnthropicSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    tools: ToolsSettings = Field(default_factory=ToolsSettings)
    chat: ChatSettings = Field(default_factory=ChatSettings)
    raw_storage: RawStorageSettings = Field(default_factory=RawStorageSettings)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Settings":
        """Load settings from TOML config file, falling back to defaults."""
        if config_path is None:
            config_path = Path.home() / ".config/studymind/config.toml"

        if config_path.exists():
            import toml

            data = toml.load(config_path)
            return cls(
                general=GeneralSettings(**data.get("general", {})),
                anthropic=AnthropicSettings(**data.get("anthropic", {})),
                storage=StorageSettings(**data.get("storage", {})),
                tools=ToolsSettings(**data.get("tools", {})),
                chat=ChatSettings(**data.get("chat", {})),
                raw_storage=RawStorageSettings(**data.get("raw_storage", {})),
            )

        return cls()


# Module-level singleton
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings
