"""Application settings — Pydantic-based configuration with YAML and env var support.

Configuration is loaded from (in order of precedence):
  1. YAML config file (if specified)
  2. Environment variables (INDEXSYNC_ prefix)
  3. Default values

The tree follows the usual search-bundle layout: named ``clients`` (how to
reach a backend) and named ``indexes`` (what to index and when).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings

from indexsync.exceptions import ConfigurationError

SUPPORTED_DRIVERS = ("orm", "mongodb")
SUPPORTED_WRITERS = ("opensearch", "http")


class ClientSettings(BaseModel):
    """Connection settings for one search backend."""

    writer: str = Field(default="opensearch", description="Index writer: opensearch, http")
    hosts: list[str] = Field(default_factory=lambda: ["http://localhost:9200/"], description="Backend host URLs")
    username: str | None = Field(default=None, description="HTTP basic-auth username")
    password: str | None = Field(default=None, description="HTTP basic-auth password")
    api_key: str | None = Field(default=None, description="API key authentication")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    verify_certs: bool = Field(default=True, description="Verify TLS certificates")
    headers: dict[str, str] = Field(default_factory=dict, description="Extra HTTP headers")
    extra: dict[str, Any] = Field(default_factory=dict, description="Writer-specific options")

    @field_validator("writer")
    @classmethod
    def _check_writer(cls, v: str) -> str:
        if v not in SUPPORTED_WRITERS:
            raise ValueError(f"The writer {v} is not supported. Please choose one of {list(SUPPORTED_WRITERS)}")
        return v

    @field_validator("hosts", mode="before")
    @classmethod
    def _parse_hosts(cls, v: Any) -> list[str]:
        """Parse hosts from JSON string (env var) or list."""
        if isinstance(v, str):
            import json

            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return [str(h) for h in parsed]
            except (json.JSONDecodeError, TypeError):
                pass
            # Single host as plain string
            return [v] if v else []
        return list(v)

    @field_validator("hosts")
    @classmethod
    def _trailing_slash(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("At least one host is required")
        return [h if h.endswith("/") else f"{h}/" for h in v]


class ListenerSettings(BaseModel):
    """Which persistence events are propagated to the index, and how."""

    enabled: bool = Field(default=True, description="Whether the listener is active at all")
    insert: bool = Field(default=True, description="Propagate inserts")
    update: bool = Field(default=True, description="Propagate updates")
    delete: bool = Field(default=True, description="Propagate deletes")
    flush: bool = Field(default=True, description="Write pending operations on flush")
    defer: bool = Field(default=False, description="Build documents at drain time instead of pre-flush")
    logger: str | bool = Field(
        default=True,
        description="Error channel: true for the default logger, a logger name, or false to disable",
    )

    @field_validator("logger", mode="before")
    @classmethod
    def _default_logger(cls, v: Any) -> Any:
        if v is None:
            return True
        if isinstance(v, str) and v.strip().lower() in ("true", "false"):
            return v.strip().lower() == "true"
        return v


class PersisterSettings(BaseModel):
    """How pending operations are submitted to the backend."""

    batch_size: int = Field(default=100, ge=1, description="Operations per bulk request")
    refresh: Literal["true", "wait_for", "false"] | None = Field(
        default=None,
        description="Refresh policy forwarded with each bulk request",
    )

    @field_validator("refresh", mode="before")
    @classmethod
    def _bool_refresh(cls, v: Any) -> Any:
        if isinstance(v, bool):
            return "true" if v else "false"
        return v


class PersistenceSettings(BaseModel):
    """Binding between an index and a persisted model."""

    driver: str = Field(default="orm", description="Persistence driver: orm, mongodb")
    model: str | None = Field(default=None, description="Dotted import path of the mapped model class")
    identifier: str = Field(default="id", description="Primary key attribute of the model")
    collection: str | None = Field(
        default=None,
        description="MongoDB collection whose change-stream documents this index receives",
    )
    listener: ListenerSettings = Field(default_factory=ListenerSettings)
    persister: PersisterSettings = Field(default_factory=PersisterSettings)

    @field_validator("driver")
    @classmethod
    def _check_driver(cls, v: str) -> str:
        if v not in SUPPORTED_DRIVERS:
            raise ValueError(f"The driver {v} is not supported. Please choose one of {list(SUPPORTED_DRIVERS)}")
        return v


class SerializerSettings(BaseModel):
    """Document serialization options."""

    groups: list[str] = Field(default_factory=list, description="Serialization groups to include")
    serialize_null: bool = Field(default=False, description="Keep null-valued fields as explicit nulls")

    @field_validator("groups", mode="before")
    @classmethod
    def _null_groups(cls, v: Any) -> Any:
        return [] if v is None else v


class IdSettings(BaseModel):
    """Document identifier options."""

    path: str | None = Field(default=None, description="Dotted property path used as document id")


class IndexSettings(BaseModel):
    """Configuration for one search index."""

    model_config = ConfigDict(populate_by_name=True)

    index_name: str | None = Field(default=None, description="Backend index name (defaults to the config key)")
    client: str | None = Field(default=None, description="Client name (defaults to default_client)")
    indexable_callback: str | None = Field(
        default=None,
        description="Property path on the object, or 'module:function', deciding if an object is indexable",
    )
    identity: IdSettings = Field(default_factory=IdSettings, alias="_id")
    properties: dict[str, Any] = Field(default_factory=dict, description="Indexed fields (empty = introspect)")
    persistence: PersistenceSettings | None = Field(default=None, description="Persistence binding")
    serializer: SerializerSettings = Field(default_factory=SerializerSettings)

    @field_validator("properties", mode="before")
    @classmethod
    def _normalize_properties(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, list):
            return {name: {} for name in v}
        return v


class MessagingSettings(BaseModel):
    """Deferred indexing over a message channel."""

    enabled: bool = Field(default=False, description="Publish batches instead of writing them inline")
    backend: Literal["memory", "redis"] = Field(default="memory", description="Channel backend")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    queue: str = Field(default="indexsync:batches", description="Queue (Redis list) name")


class ObservabilitySettings(BaseModel):
    """Observability configuration."""

    log_level: str = Field(default="info", description="Log level: debug, info, warning, error")
    log_format: str = Field(default="json", description="Log format: json, console")


class Settings(BaseSettings):
    """Root application settings.

    Configuration is loaded from environment variables with the INDEXSYNC_ prefix.
    Nested settings use double underscores: INDEXSYNC_MESSAGING__ENABLED=true

    Example:
        INDEXSYNC_DEFAULT_CLIENT=default
        INDEXSYNC_CLIENTS='{"default": {"hosts": ["https://search:9200"]}}'
        INDEXSYNC_OBSERVABILITY__LOG_FORMAT=console
    """

    model_config = {
        "env_prefix": "INDEXSYNC_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    default_client: str | None = Field(default=None, description="Defaults to the first client defined")
    default_manager: str = Field(default="orm", description="Default persistence driver")

    clients: dict[str, ClientSettings] = Field(default_factory=dict)
    indexes: dict[str, IndexSettings] = Field(default_factory=dict)
    messaging: MessagingSettings = Field(default_factory=MessagingSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @field_validator("default_manager")
    @classmethod
    def _check_manager(cls, v: str) -> str:
        if v not in SUPPORTED_DRIVERS:
            raise ValueError(f"The driver {v} is not supported. Please choose one of {list(SUPPORTED_DRIVERS)}")
        return v

    @classmethod
    def from_yaml(cls, path: str | Path) -> Settings:
        """Load settings from a YAML configuration file.

        Values from the YAML file are passed as constructor arguments;
        environment variables fill in whatever the file leaves unset.

        Args:
            path: Path to the YAML config file.

        Returns:
            Populated Settings instance.
        """
        import yaml  # type: ignore[import-untyped]

        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def index_name(self, name: str) -> str:
        """Backend index name for a configured index."""
        return self.get_index(name).index_name or name

    def get_index(self, name: str) -> IndexSettings:
        if name not in self.indexes:
            raise ConfigurationError(
                f"No index configured with name '{name}'. Available indexes: {list(self.indexes.keys())}"
            )
        return self.indexes[name]

    def client_for(self, name: str) -> tuple[str, ClientSettings]:
        """Resolve the client an index writes through.

        Falls back to ``default_client``, then to the first client defined.

        Raises:
            ConfigurationError: If no matching client is configured.
        """
        client_name = self.get_index(name).client or self.default_client
        if client_name is None:
            if not self.clients:
                raise ConfigurationError("No clients are configured.")
            client_name = next(iter(self.clients))
        if client_name not in self.clients:
            raise ConfigurationError(
                f"Index '{name}' references unknown client '{client_name}'. "
                f"Available clients: {list(self.clients.keys())}"
            )
        return client_name, self.clients[client_name]

    @property
    def synced_indexes(self) -> list[str]:
        """Indexes bound to a persistence layer, in configuration order."""
        return [name for name, index in self.indexes.items() if index.persistence is not None]
