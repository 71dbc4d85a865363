"""
Pydantic-based configuration models for the nyelvszo real-time server.

Every group reads its own environment prefix; AppConfig aggregates them and
also reads a local .env file.
"""

from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class ServerConfig(BaseSettings):
    """Server network configuration."""

    host: str = Field(default="127.0.0.1", description="Server bind address")
    port: int = Field(default=8000, description="Server port")

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1024 <= v <= 65535:
            logger.error("Invalid server port", port=v, valid_range="1024-65535")
            raise ValueError("Port must be between 1024 and 65535")
        return v

    model_config = {"env_prefix": "SERVER_", "case_sensitive": False, "extra": "ignore"}


class DatabaseConfig(BaseSettings):
    """Event store database configuration."""

    url: str = Field(
        default="sqlite+aiosqlite:///./nyelvszo_events.db",
        description="Async SQLAlchemy URL of the event store",
    )
    echo: bool = Field(default=False, description="Echo SQL statements to the log")

    @field_validator("url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Only async drivers the event store is tested against are accepted."""
        if not v:
            logger.error("Database URL validation failed - empty URL")
            raise ValueError("Database URL cannot be empty")
        if not v.startswith(("sqlite+aiosqlite", "postgresql+asyncpg")):
            logger.error(
                "Database URL validation failed - unsupported driver",
                url_preview=v[:50],
                expected=["sqlite+aiosqlite", "postgresql+asyncpg"],
            )
            raise ValueError("Database URL must use 'sqlite+aiosqlite' or 'postgresql+asyncpg'")
        return v

    model_config = {"env_prefix": "DATABASE_", "case_sensitive": False, "extra": "ignore"}


class SecurityConfig(BaseSettings):
    """Bearer token verification settings."""

    jwt_secret: str = Field(..., description="Shared secret used to verify bearer tokens (required)")
    jwt_algorithm: str = Field(default="HS256", description="Token signature algorithm")
    access_token_expire_minutes: int = Field(default=60, description="Lifetime of tokens issued by tooling")

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Reject a blank secret so the server fails fast at startup."""
        if not v or not v.strip():
            logger.error("JWT secret validation failed - empty secret")
            raise ValueError("NYELVSZO_JWT_SECRET must be set to a non-empty value")
        return v

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """Shared-secret verification supports the HMAC family only."""
        if v not in ("HS256", "HS384", "HS512"):
            raise ValueError(f"JWT algorithm must be one of HS256/HS384/HS512, got '{v}'")
        return v

    model_config = {"env_prefix": "NYELVSZO_", "case_sensitive": False, "extra": "ignore"}


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    environment: str = Field(..., description="Logging environment (required)")
    level: str = Field(default="INFO", description="Log level")
    log_base: str = Field(default="logs", description="Base log directory")
    rotation_max_size: str = Field(default="10MB", description="Log rotation max size")
    rotation_backup_count: int = Field(default=5, description="Number of backup log files")
    disable_logging: bool = Field(default=False, description="Disable all file logging")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate logging environment."""
        valid_environments = ["local", "unit_test", "production"]
        if v not in valid_environments:
            logger.error("Invalid logging environment", environment=v, valid_environments=valid_environments)
            raise ValueError(f"Environment must be one of {valid_environments}, got '{v}'")
        return v

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}, got '{v}'")
        return v_upper

    model_config = {"env_prefix": "LOGGING_", "case_sensitive": False, "extra": "ignore"}

    def to_dict(self) -> dict[str, Any]:
        """Convert to the dictionary shape expected by setup_enhanced_logging."""
        return {
            "environment": self.environment,
            "level": self.level,
            "log_base": self.log_base,
            "rotation": {
                "max_size": self.rotation_max_size,
                "backup_count": self.rotation_backup_count,
            },
            "disable_logging": self.disable_logging,
        }


class RealtimeConfig(BaseSettings):
    """Connection layer tuning."""

    heartbeat_interval: float = Field(default=30.0, description="Seconds between liveness sweeps")
    heartbeat_timeout: float = Field(default=60.0, description="Seconds without a liveness signal before termination")
    max_backlog_per_connection: int = Field(default=100, description="Frames kept for a connection that cannot be written")
    backlog_max_age: float = Field(default=3600.0, description="Seconds a parked frame is kept before the sweep drops it")
    max_message_bytes: int = Field(default=64 * 1024, description="Largest inbound frame accepted")
    search_result_limit: int = Field(default=10, description="Results returned per search frame")
    search_suggestion_limit: int = Field(default=5, description="Suggestions returned per search frame")
    max_connections_warning: int = Field(default=800, description="Connection count that turns health to warning")

    @field_validator("heartbeat_interval", "heartbeat_timeout", "backlog_max_age")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Timers must be positive."""
        if v <= 0:
            raise ValueError("Liveness timers must be positive")
        return v

    model_config = {"env_prefix": "REALTIME_", "case_sensitive": False, "extra": "ignore"}


class NotificationConfig(BaseSettings):
    """Notification delivery processor settings."""

    processor_interval: float = Field(default=5.0, description="Seconds between delivery processor ticks")
    batch_size: int = Field(default=10, description="Tasks processed per tick")
    guaranteed_max_attempts: int = Field(default=5, description="Attempts for guaranteed-delivery notifications")
    backoff_base: float = Field(default=2.0, description="Exponential backoff base in seconds")
    rate_limit_max: int = Field(default=10, description="Notifications per recipient and template per window")
    rate_limit_window: float = Field(default=3600.0, description="Rate limit window in seconds")
    task_retention: float = Field(default=3600.0, description="Seconds finished tasks are kept for inspection")

    @field_validator("batch_size", "guaranteed_max_attempts", "rate_limit_max")
    @classmethod
    def validate_at_least_one(cls, v: int) -> int:
        """Counts must be at least one."""
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    model_config = {"env_prefix": "NOTIFICATIONS_", "case_sensitive": False, "extra": "ignore"}


class CORSConfig(BaseSettings):
    """Cross-origin resource sharing configuration for the management routes."""

    allow_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:4200", "http://127.0.0.1:4200"],
        description="Origins permitted to access the API",
    )
    allow_credentials: bool = Field(default=True, description="Whether credentialed requests are accepted")
    allow_methods: list[str] = Field(
        default_factory=lambda: ["GET", "POST", "OPTIONS"],
        description="HTTP methods permitted by CORS responses",
    )
    allow_headers: list[str] = Field(
        default_factory=lambda: ["Content-Type", "Authorization", "Accept"],
        description="Request headers permitted by CORS responses",
    )

    model_config = {"env_prefix": "CORS_", "case_sensitive": False, "extra": "ignore"}


class AppConfig(BaseSettings):
    """
    Composite application configuration.

    This is the main configuration class that aggregates all other configs.
    Access via get_config().
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)  # type: ignore[arg-type]
    logging: LoggingConfig = Field(default_factory=LoggingConfig)  # type: ignore[arg-type]
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    cors: CORSConfig = Field(default_factory=CORSConfig)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "case_sensitive": False, "extra": "ignore"}

    def to_public_dict(self) -> dict[str, Any]:
        """Client-facing settings, with every secret left out."""
        return {
            "heartbeatInterval": self.realtime.heartbeat_interval,
            "heartbeatTimeout": self.realtime.heartbeat_timeout,
            "maxMessageBytes": self.realtime.max_message_bytes,
            "notificationProcessorInterval": self.notifications.processor_interval,
            "rateLimit": {
                "max": self.notifications.rate_limit_max,
                "window": self.notifications.rate_limit_window,
            },
        }
