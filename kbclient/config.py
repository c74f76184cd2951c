"""Client configuration with environment variable loading.

Pydantic-based configuration for the knowledge client. The token is an
opaque string: an empty token is accepted here and rejected per query.
"""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

# Load environment variables from .env file
load_dotenv()

DEFAULT_CONTENT_TYPES = (
    "application/pdf",
    "text/plain",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/msword",
    "text/markdown",
)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _split_ids(value: str | list[str] | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [item.strip() for item in value if item and item.strip()]


class ClientConfig(BaseModel):
    """Configuration for the knowledge client.

    Attributes:
        base_url: Backend base URL.
        token: Bearer token for the backend (opaque).
        kb_list: Knowledge-base identifiers to query.
        model: Model identifier forwarded to the backend.
        stream: Whether queries use the streaming endpoint.
        temperature: Sampling temperature forwarded to the backend.
        max_tokens: Maximum tokens in the generated answer.
        response_format: Answer format requested from the backend.
        use_history: Send the whole conversation instead of the last message.
        request_timeout: Timeout in seconds for every HTTP call.
        poll_initial_delay: Seconds before the first document status check.
        poll_interval: Base seconds between status checks.
        poll_max_interval: Upper bound for the backoff between checks.
        poll_max_attempts: Status checks before a document is given up on.
        allowed_content_types: MIME types accepted for upload.
    """

    base_url: str = Field(
        default_factory=lambda: os.getenv("KB_API_BASE_URL", "http://localhost:8000"),
        description="Backend base URL",
    )
    token: str = Field(
        default_factory=lambda: os.getenv("KB_API_TOKEN", ""),
        description="Bearer token for the knowledge backend",
    )
    kb_list: list[str] = Field(
        default_factory=lambda: _split_ids(os.getenv("KB_LIST")),
        description="Knowledge-base identifiers",
    )
    model: str = Field(
        default_factory=lambda: os.getenv("KB_MODEL", "gpt-4o-mini"),
        description="Model to use",
    )
    stream: bool = Field(
        default_factory=lambda: _env_bool("KB_STREAM", True),
        description="Use the streaming query endpoint",
    )
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, ge=1, le=128000)
    response_format: str = Field(default="text")
    use_history: bool = Field(default=True)

    stream_path: str = "/api/knowledge/stream"
    query_path: str = "/api/knowledge/query"
    upload_path: str = "/api/documents/upload"
    status_path: str = "/api/documents/status"
    delete_path: str = "/api/documents/delete"

    request_timeout: float = Field(default=120.0, gt=0)
    poll_initial_delay: float = Field(default=3.0, ge=0)
    poll_interval: float = Field(default=5.0, ge=0)
    poll_max_interval: float = Field(default=60.0, ge=0)
    poll_max_attempts: int = Field(default=60, ge=1)
    allowed_content_types: tuple[str, ...] = DEFAULT_CONTENT_TYPES

    @field_validator("kb_list", mode="before")
    @classmethod
    def split_kb_list(cls, v: str | list[str] | None) -> list[str]:
        """Accept a comma-separated string or a list of ids."""
        return _split_ids(v)

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URL so endpoint paths join cleanly."""
        return v.rstrip("/")


class QueryOptions(BaseModel):
    """Per-query settings derived from a ClientConfig.

    Attributes:
        token: Bearer token sent in the query body.
        kb_list: Knowledge bases to search.
        model: Model identifier.
        stream: Streaming or single-response mode.
        temperature: Sampling temperature.
        max_tokens: Maximum answer tokens.
        response_format: Requested answer format.
        documents: Document ids to restrict retrieval to. None lets the
            orchestrator resolve selected ready documents itself.
        use_history: Send the whole conversation instead of the last message.
    """

    token: str = ""
    kb_list: list[str] = Field(default_factory=list)
    model: str = "gpt-4o-mini"
    stream: bool = True
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, ge=1, le=128000)
    response_format: str = "text"
    documents: list[str] | None = None
    use_history: bool = True

    @classmethod
    def from_config(cls, config: ClientConfig, **overrides: object) -> "QueryOptions":
        """Build query options from client configuration.

        Args:
            config: Client configuration supplying the defaults.
            **overrides: Field values replacing the configured ones.

        Returns:
            Validated QueryOptions instance.
        """
        values: dict[str, object] = {
            "token": config.token,
            "kb_list": list(config.kb_list),
            "model": config.model,
            "stream": config.stream,
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "response_format": config.response_format,
            "use_history": config.use_history,
        }
        values.update(overrides)
        return cls.model_validate(values)


def get_client_config() -> ClientConfig:
    """Create client configuration from environment.

    Returns:
        Configured ClientConfig instance.
    """
    return ClientConfig()
