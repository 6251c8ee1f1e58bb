"""Configuration management for the RFI Answer Engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # Provider keys (required)
    ANTHROPIC_API_KEY: str = Field(..., description="Anthropic API key")
    OPENAI_API_KEY: str = Field(..., description="OpenAI API key (embeddings)")

    # Environment
    RFI_ENGINE_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")
    LOG_LEVEL: str | None = Field(default=None, description="Overrides the per-environment log level")
    LLM_USAGE_LOGGING: bool = Field(
        default=True, description="Record token usage rows in llm_usage_log"
    )

    # Generation
    EXTRACTION_MODEL: str = Field(
        default="claude-haiku-4-5-20251001", description="Model for question extraction"
    )
    GENERATION_MODEL: str = Field(
        default="claude-sonnet-4-5-20250929", description="Model for answer generation"
    )
    GENERATION_MAX_TOKENS: int = Field(default=8192, description="Max output tokens per call")
    COMPANY_NAME: str = Field(default="Scope3", description="Company the answers speak for")
    CONTEXT_DOCS_DIR: str = Field(
        default="system-prompt-files",
        description="Directory with info.txt / policies.txt / methodology.txt",
    )

    # Embeddings and similarity retrieval
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    EMBEDDING_DIM: int = Field(default=1536, description="Embedding vector dimension")
    EMBEDDING_BATCH_SIZE: int = Field(default=250, description="Max texts per embeddings call")
    SIMILARITY_TOP_K: int = Field(default=3, description="Neighbors returned per question")
    SIMILARITY_THRESHOLD: float = Field(
        default=0.75, description="Min similarity score for a prior answer to be used"
    )

    # Pipeline
    ANSWER_BATCH_SIZE: int = Field(default=10, description="Questions per answer batch")
    BATCH_STAGGER_MS: int = Field(default=50, description="Delay step between batch events")
    ANSWER_EVENT_MAX_JITTER_MS: int = Field(
        default=1000, description="Upper bound of the random delay on per-answer events"
    )

    # Store
    STORE_WRITE_LIMIT: int = Field(default=25, description="Max items per store write call")
    STORE_PAGE_SIZE: int = Field(default=100, description="Items per label query page")

    # Event bus
    HANDLER_TIMEOUT_SECONDS: float = Field(
        default=300.0, description="Execution timeout for one event handler run"
    )
    EVENT_MAX_ATTEMPTS: int = Field(default=3, description="Deliveries before an event is dropped")
    EVENT_RETRY_DELAY_SECONDS: float = Field(
        default=5.0, description="Delay before redelivering a failed event"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()
