"""Configuration settings models using Pydantic."""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_POLL_INTERVAL_MS = 250
DEFAULT_STORAGE_KEY = "webchat-session-id"
MAX_POLL_FAILURES = 3


def normalize_endpoint(endpoint: Optional[str]) -> Optional[str]:
    """Strip whitespace and trailing slashes so path joins stay predictable."""
    if endpoint is None:
        return None
    normalized = endpoint.strip().rstrip("/")
    return normalized or None


class ServiceSettings(BaseModel):
    """Chat service connection settings."""
    endpoint: Optional[str] = None
    preset: Optional[str] = None
    title: Optional[str] = None
    poll_interval_ms: int = Field(default=DEFAULT_POLL_INTERVAL_MS, ge=0)
    storage_key: str = DEFAULT_STORAGE_KEY
    timeout_seconds: float = 30.0
    max_poll_failures: int = Field(default=MAX_POLL_FAILURES, ge=1)

    @field_validator("endpoint")
    @classmethod
    def _normalize_endpoint(cls, value: Optional[str]) -> Optional[str]:
        return normalize_endpoint(value)

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint)


class StorageSettings(BaseModel):
    """Where the session id is persisted."""
    backend: Literal["memory", "file"] = "file"
    path: str = "./data/session.json"


class TextSettings(BaseModel):
    """Localized strings surfaced by the engine."""
    send_button_label: str = "Send"
    tool_call_placeholder: str = "Let me look that up…"
    poll_failure_notice: str = (
        "The connection to the assistant was interrupted. Please try again in a moment."
    )
    send_while_streaming_tooltip: str = "Please wait until the current response is finished."
    send_while_consent_pending_tooltip: str = (
        "You can send messages after accepting the privacy notice."
    )
    send_while_terminated_tooltip: str = "The chat is inactive. Restart to begin a new session."


class LoggingSettings(BaseModel):
    """Logging output settings."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    file: Optional[str] = None
    max_bytes: int = 1_000_000


class Settings(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(extra="ignore")  # Ignore unknown fields in config file

    service: ServiceSettings = Field(default_factory=ServiceSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    texts: TextSettings = Field(default_factory=TextSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    locale: str = "en-US"
    require_privacy_consent: bool = False
