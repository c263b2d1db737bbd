import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False
    LOG_LEVEL: str = "INFO"

    # Content validation limits
    POST_MIN_CHARS: int = 1
    POST_MAX_CHARS: int = 2000
    COMMENT_MAX_CHARS: int = 500
    TRANSCRIPT_MAX_CHARS: int = 20000
    DISPLAY_NAME_MIN_CHARS: int = 2
    DISPLAY_NAME_MAX_CHARS: int = 40
    PROFANITY_EXTRA: str = ""  # comma-separated, merged into the default denylist

    # Formatting
    EXCERPT_MAX_CHARS: int = 280

    # Summarization (Groq)
    GROQ_API_KEY: Optional[str] = None
    SUMMARY_MODEL: str = "llama-3.1-8b-instant"
    SUMMARY_TEMPERATURE: float = 0.4
    SUMMARY_MAX_CHARS: int = 280
    SUMMARY_MAX_TOKENS: int = 200
    SUMMARY_TIMEOUT_SECONDS: float = 10.0

    # Feed ranking
    FEED_RECENCY_BIAS_SECONDS: float = 21600.0  # 6 hours
    FEED_ENGAGEMENT_CAP: int = 100

    # Observability / Tracing
    OTEL_ENABLED: bool = False
    OTEL_EXPORTER: str = "console"  # console | memory

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def profanity_extra_words(self) -> list[str]:
        return [w.strip().lower() for w in self.PROFANITY_EXTRA.split(",") if w.strip()]


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("agora")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "GROQ_API_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if cfg.POST_MIN_CHARS < 1 or cfg.POST_MAX_CHARS < cfg.POST_MIN_CHARS:
        raise RuntimeError("POST_MIN_CHARS/POST_MAX_CHARS must describe a non-empty range")
    if cfg.DISPLAY_NAME_MAX_CHARS < cfg.DISPLAY_NAME_MIN_CHARS:
        raise RuntimeError("DISPLAY_NAME_MAX_CHARS must be >= DISPLAY_NAME_MIN_CHARS")
    if cfg.FEED_RECENCY_BIAS_SECONDS <= 0:
        raise RuntimeError("FEED_RECENCY_BIAS_SECONDS must be positive")

    return True
