"""Configuration management for DocChat."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"

if env_path.exists():
    load_dotenv(env_path)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    """Application configuration loaded from environment variables."""

    # OpenAI Configuration
    @classmethod
    def get_openai_api_key(cls) -> str:
        """Get OpenAI API key from environment variables.

        Returns:
            OpenAI API key from environment or empty string if not set.
        """
        return os.getenv("OPENAI_API_KEY", "")

    OPENAI_BASE_URL: str | None = os.getenv("OPENAI_BASE_URL")

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    OPENAI_LOG_LEVEL: str = os.getenv("OPENAI_LOG_LEVEL", "WARNING").upper()

    # Application Settings
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Chunking Configuration
    CHUNK_SIZE: int = int(os.getenv("CHUNK_SIZE", "1000"))
    CHUNK_OVERLAP: int = int(os.getenv("CHUNK_OVERLAP", "250"))
    PRESERVE_SENTENCES: bool = _env_flag("PRESERVE_SENTENCES", "true")
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")

    # Chat Model Configuration
    CHAT_MODEL: str = os.getenv("CHAT_MODEL", "gpt-4.1-nano-2025-04-14")
    CHAT_MAX_TOKENS: int = int(os.getenv("CHAT_MAX_TOKENS", "1024"))
    GENERAL_MAX_TOKENS: int = int(os.getenv("GENERAL_MAX_TOKENS", "300"))
    SUMMARY_MAX_TOKENS: int = int(os.getenv("SUMMARY_MAX_TOKENS", "200"))

    # Retrieval Configuration
    MAX_RESULTS: int = int(os.getenv("MAX_RESULTS", "10"))
    STRATEGY_TIMEOUT_S: float = float(os.getenv("STRATEGY_TIMEOUT_S", "5.0"))
    GENERATION_TIMEOUT_S: float = float(os.getenv("GENERATION_TIMEOUT_S", "30.0"))

    # Conversation Memory Configuration
    MAX_TURNS_PER_CHAT: int = int(os.getenv("MAX_TURNS_PER_CHAT", "50"))
    HISTORY_MAX_TURNS: int = int(os.getenv("HISTORY_MAX_TURNS", "3"))
    HISTORY_CHAR_BUDGET: int = int(os.getenv("HISTORY_CHAR_BUDGET", "1200"))
    CACHE_CAPACITY: int = int(os.getenv("CACHE_CAPACITY", "20"))
    CACHE_SIMILARITY_THRESHOLD: float = float(
        os.getenv("CACHE_SIMILARITY_THRESHOLD", "0.8")
    )

    # Prompt Configuration
    PROMPT_MAX_CONTEXT_CHARS: int = int(os.getenv("PROMPT_MAX_CONTEXT_CHARS", "6000"))

    # Storage Configuration
    DOCUMENT_STORE_DB_PATH: Path = Path(
        os.getenv("DOCUMENT_STORE_DB_PATH", "data/documents.db")
    )
    VECTOR_STORE_DB_PATH: Path = Path(
        os.getenv("VECTOR_STORE_DB_PATH", "data/vector_store.db")
    )
    FAISS_INDEX_PATH: Path = Path(
        os.getenv("FAISS_INDEX_PATH", "data/faiss/index.faiss")
    )
    VECTOR_RAW_TOP_K_MULTIPLIER: int = int(
        os.getenv("VECTOR_RAW_TOP_K_MULTIPLIER", "2")
    )

    # API Header Configuration
    API_USER_AGENT: str = os.getenv("API_USER_AGENT", "DocChat/1.0")
    API_TEST_HEADER_NAME: str | None = os.getenv(
        "API_TEST_HEADER_NAME",
        "X-DocChat-Test-Token",
    )
    API_TEST_HEADER_VALUE: str | None = os.getenv(
        "API_TEST_HEADER_VALUE",
        "allow",
    )

    @classmethod
    def validate(cls) -> None:
        """Fail fast on settings the pipeline cannot run with.

        Raises:
            ValueError: If OPENAI_API_KEY is missing, or character-window
                chunking is configured with an overlap that never advances.
        """
        if not cls.get_openai_api_key():
            msg = (
                "OPENAI_API_KEY is required. Please set it in .env file or environment."
            )
            raise ValueError(msg)
        if not cls.PRESERVE_SENTENCES and cls.CHUNK_OVERLAP >= cls.CHUNK_SIZE:
            msg = "CHUNK_OVERLAP must be smaller than CHUNK_SIZE"
            raise ValueError(msg)

    @classmethod
    def is_development(cls) -> bool:
        return cls.ENVIRONMENT.lower() == "development"

    @classmethod
    def is_production(cls) -> bool:
        return cls.ENVIRONMENT.lower() == "production"

    @classmethod
    def setup_logging(cls) -> None:
        """Configure root logging from LOG_LEVEL.

        The OpenAI SDK and its HTTP transport log every request at INFO, so
        both follow OPENAI_LOG_LEVEL instead.
        """
        logging.basicConfig(
            level=getattr(logging, cls.LOG_LEVEL, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )

        client_level = getattr(logging, cls.OPENAI_LOG_LEVEL, logging.WARNING)
        for name in ("openai", "httpx"):
            logging.getLogger(name).setLevel(client_level)

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        return logging.getLogger(name)

    @classmethod
    def get_api_headers(cls) -> dict[str, str]:
        """Headers sent with every OpenAI request.

        Returns:
            The user agent plus the optional test header; empty values are
            left out.
        """
        headers = {"User-Agent": cls.API_USER_AGENT} if cls.API_USER_AGENT else {}
        if cls.API_TEST_HEADER_NAME and cls.API_TEST_HEADER_VALUE:
            headers[cls.API_TEST_HEADER_NAME] = cls.API_TEST_HEADER_VALUE
        return headers


config = Config()
