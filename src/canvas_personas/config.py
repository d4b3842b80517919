"""Configuration for the canvas persona service.

Configuration is loaded once at startup from:
- environment variables
- and a local `.env` file (if present)

Components never read the environment themselves; they receive plain values
from :class:`PersonaSettings`.
"""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from canvas_personas.retry import RetryPolicy


class PersonaSettings(BaseSettings):
    """Settings for the canvas persona service.

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `PersonaSettings(_env_file=path_to_env)`.
    """

    canvus_server: str = Field(
        default="",
        validation_alias="CANVUS_SERVER",
        description="Base URL of the canvas server, e.g. https://canvus.example.com",
    )
    canvas_id: str = Field(default="", validation_alias="CANVAS_ID")
    canvus_api_key: str = Field(default="", validation_alias="CANVUS_API_KEY")
    canvus_verify_tls: bool = Field(default=True, validation_alias="CANVUS_VERIFY_TLS")

    openai_api_key: str = Field(default="", validation_alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o-mini", validation_alias="OPENAI_MODEL")
    openai_image_model: str = Field(default="dall-e-2", validation_alias="OPENAI_IMAGE_MODEL")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, validation_alias="LLM_TEMP")
    generate_images: bool = Field(
        default=True,
        validation_alias="GENERATE_PERSONA_IMAGES",
        description="Upload a generated headshot next to each new persona note.",
    )

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    debug: bool = Field(default=False, validation_alias="DEBUG")

    debounce_seconds: float = Field(default=1.0, gt=0, validation_alias="DEBOUNCE_SECONDS")
    question_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        validation_alias="QUESTION_TIMEOUT",
        description="How long to wait for a question to be typed into a new question note.",
    )
    question_poll_seconds: float = Field(
        default=0.5, gt=0, validation_alias="QUESTION_POLL_SECONDS"
    )
    workflow_timeout_seconds: float = Field(
        default=900.0,
        gt=0,
        validation_alias="WORKFLOW_TIMEOUT_SECONDS",
        description="No new workflow stage starts once a run has exceeded this many seconds.",
    )
    shutdown_grace_seconds: float = Field(
        default=60.0,
        ge=0,
        validation_alias="SHUTDOWN_GRACE_SECONDS",
        description="How long shutdown waits for running workflows and headshot uploads.",
    )
    min_required_answers: int = Field(default=1, ge=1, le=4, validation_alias="MIN_REQUIRED_ANSWERS")
    min_required_personas: int = Field(
        default=1, ge=1, le=4, validation_alias="MIN_REQUIRED_PERSONAS"
    )
    chat_token_limit: int = Field(
        default=256,
        gt=0,
        validation_alias="CHAT_TOKEN_LIMIT",
        description="Answers longer than this many characters are rephrased once.",
    )

    retry_initial_delay: float = Field(default=1.0, ge=0, validation_alias="RETRY_INITIAL_DELAY")
    retry_max_delay: float = Field(default=32.0, ge=0, validation_alias="RETRY_MAX_DELAY")
    retry_max_attempts: int = Field(default=5, ge=1, validation_alias="RETRY_MAX_ATTEMPTS")
    retry_jitter: float = Field(default=0.1, ge=0, le=1, validation_alias="RETRY_JITTER")

    stream_initial_backoff: float = Field(
        default=1.0, gt=0, validation_alias="STREAM_INITIAL_BACKOFF"
    )
    stream_max_backoff: float = Field(default=30.0, gt=0, validation_alias="STREAM_MAX_BACKOFF")
    stream_max_reconnects: int = Field(default=10, ge=1, validation_alias="STREAM_MAX_RECONNECTS")
    stream_stable_seconds: float = Field(
        default=60.0,
        ge=0,
        validation_alias="STREAM_STABLE_SECONDS",
        description="A connection that stays up this long resets the reconnect backoff.",
    )

    port: int = Field(default=8080, validation_alias="PORT")

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_backoff_bounds(self) -> PersonaSettings:
        if self.retry_max_delay < self.retry_initial_delay:
            raise ValueError("RETRY_MAX_DELAY must be >= RETRY_INITIAL_DELAY")
        if self.stream_max_backoff < self.stream_initial_backoff:
            raise ValueError("STREAM_MAX_BACKOFF must be >= STREAM_INITIAL_BACKOFF")
        return self

    def require_canvas(self) -> None:
        """Raise ValueError unless the canvas connection settings are present."""

        missing = [
            name
            for name, value in (
                ("CANVUS_SERVER", self.canvus_server),
                ("CANVAS_ID", self.canvas_id),
                ("CANVUS_API_KEY", self.canvus_api_key),
            )
            if not value.strip()
        ]
        if missing:
            raise ValueError(f"Missing required settings: {', '.join(missing)}")

    def require_openai(self) -> None:
        if not self.openai_api_key.strip():
            raise ValueError("OPENAI_API_KEY is required")

    @property
    def canvas_base_url(self) -> str:
        return f"{self.canvus_server.rstrip('/')}/api/v1/canvases/{self.canvas_id}"

    def retry_policy(self, **overrides: object) -> RetryPolicy:
        """Build the retry policy shared by outbound calls."""

        params: dict[str, object] = {
            "initial_delay": self.retry_initial_delay,
            "max_delay": self.retry_max_delay,
            "max_attempts": self.retry_max_attempts,
            "jitter_fraction": self.retry_jitter,
        }
        params.update(overrides)
        return RetryPolicy(**params)  # type: ignore[arg-type]
