"""Configuration management for the workflow node engine."""

import os
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator
from enum import Enum

from .integrations.platform import DEFAULT_PLATFORM_API_URI

ENV_PREFIX = "FLOWENGINE_"

# Unprefixed names accepted when the prefixed variable is unset
ENV_FALLBACKS = {
    "ANTHROPIC_API_KEY": "ANTHROPIC_API_KEY",
    "PLATFORM_API_URI": "MEMBRANE_API_URI",
}


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AppConfig(BaseModel):
    """Application configuration settings."""

    # Application settings
    app_name: str = Field(default="Workflow Node Engine", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    reload: bool = Field(default=False, description="Enable auto-reload in development")

    # Database settings
    database_url: str = Field(
        default="sqlite:///./flowengine.db",
        description="Database connection URL"
    )
    database_echo: bool = Field(default=False, description="Enable SQLAlchemy query logging")

    # Execution settings
    node_timeout: float = Field(
        default=300,
        description="Maximum seconds a single node may run"
    )
    http_timeout: float = Field(default=30.0, description="Timeout in seconds for outbound HTTP calls")
    stale_run_timeout: float = Field(
        default=3600,
        description="Seconds without progress after which a running run is reconciled as failed"
    )
    event_verification_secret: Optional[str] = Field(
        default=None,
        description="Secret used to verify the hash attached to ingested events"
    )

    # Collaborators
    platform_api_uri: str = Field(default=DEFAULT_PLATFORM_API_URI, description="Integration platform API")
    anthropic_api_key: Optional[str] = Field(default=None, description="API key for the AI model")
    ai_model: str = Field(default="claude-sonnet-4-5", description="Model used by AI nodes")
    ai_max_tokens: int = Field(default=4096, description="Maximum tokens per model response")
    ai_max_tool_rounds: int = Field(default=8, description="Maximum tool call rounds per AI node")

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_max_size: int = Field(default=10485760, description="Maximum log file size in bytes")  # 10MB
    log_backup_count: int = Field(default=5, description="Number of log backup files to keep")
    structured_logging: bool = Field(default=False, description="Emit JSON log lines")

    # Security settings
    cors_origins: list = Field(
        default=["*"],
        description="CORS allowed origins"
    )

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v):
        """Validate database URL format."""
        if not v:
            raise ValueError("Database URL cannot be empty")

        supported_schemes = ['sqlite', 'postgresql', 'mysql']
        scheme = v.split('://')[0].lower().split('+')[0]

        if scheme not in supported_schemes:
            raise ValueError(f"Unsupported database scheme: {scheme}. Supported: {supported_schemes}")

        return v

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        """Validate port number."""
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator('node_timeout', 'http_timeout', 'stale_run_timeout')
    @classmethod
    def validate_timeouts(cls, v):
        """Validate timeout values."""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v

    @field_validator('ai_max_tokens', 'ai_max_tool_rounds')
    @classmethod
    def validate_ai_limits(cls, v):
        if v < 1:
            raise ValueError("AI limits must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_stale_run_timeout(self):
        if self.stale_run_timeout <= self.node_timeout:
            raise ValueError("stale_run_timeout must be longer than node_timeout")
        return self

    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite database."""
        return self.database_url.lower().startswith("sqlite")

    def get_uvicorn_config(self) -> Dict[str, Any]:
        """Get Uvicorn server configuration."""
        return {
            "host": self.host,
            "port": self.port,
            "reload": self.reload,
            "log_level": self.log_level.lower(),
            "access_log": self.debug
        }

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from environment variables."""
        def get_env(key: str, default=None, type_func=str):
            """Get environment variable with type conversion."""
            value = os.getenv(f"{ENV_PREFIX}{key}")
            if value is None and key in ENV_FALLBACKS:
                value = os.getenv(ENV_FALLBACKS[key])
            if value is None:
                return default
            if type_func == bool:
                return str(value).lower() in ('true', '1', 'yes', 'on')
            elif type_func == list:
                return value.split(',') if value else default
            return type_func(value)

        return cls(
            app_name=get_env("APP_NAME", "Workflow Node Engine"),
            app_version=get_env("APP_VERSION", "1.0.0"),
            debug=get_env("DEBUG", False, bool),
            host=get_env("HOST", "0.0.0.0"),
            port=get_env("PORT", 8000, int),
            reload=get_env("RELOAD", False, bool),
            database_url=get_env("DATABASE_URL", "sqlite:///./flowengine.db"),
            database_echo=get_env("DATABASE_ECHO", False, bool),
            node_timeout=get_env("NODE_TIMEOUT", 300, float),
            http_timeout=get_env("HTTP_TIMEOUT", 30.0, float),
            stale_run_timeout=get_env("STALE_RUN_TIMEOUT", 3600, float),
            event_verification_secret=get_env("EVENT_VERIFICATION_SECRET", None),
            platform_api_uri=get_env("PLATFORM_API_URI", DEFAULT_PLATFORM_API_URI),
            anthropic_api_key=get_env("ANTHROPIC_API_KEY", None),
            ai_model=get_env("AI_MODEL", "claude-sonnet-4-5"),
            ai_max_tokens=get_env("AI_MAX_TOKENS", 4096, int),
            ai_max_tool_rounds=get_env("AI_MAX_TOOL_ROUNDS", 8, int),
            log_level=LogLevel(get_env("LOG_LEVEL", "INFO").upper()),
            log_format=get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            log_file=get_env("LOG_FILE", None),
            log_max_size=get_env("LOG_MAX_SIZE", 10485760, int),
            log_backup_count=get_env("LOG_BACKUP_COUNT", 5, int),
            structured_logging=get_env("STRUCTURED_LOGGING", False, bool),
            cors_origins=get_env("CORS_ORIGINS", ["*"], list),
        )


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load configuration from a .env file and environment variables."""
    global _config

    from dotenv import load_dotenv
    if config_file and os.path.exists(config_file):
        load_dotenv(config_file)
    elif os.path.exists('.env'):
        load_dotenv('.env')

    _config = AppConfig.from_env()

    return _config


def reset_config():
    """Reset the global configuration instance (mainly for testing)."""
    global _config
    _config = None


def get_testing_config() -> AppConfig:
    """Get testing configuration."""
    return AppConfig(
        debug=True,
        database_url="sqlite:///:memory:",
        log_level=LogLevel.WARNING,
        node_timeout=10,
        http_timeout=5,
        anthropic_api_key="test-key",
        event_verification_secret="test-event-secret",
    )
