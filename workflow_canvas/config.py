"""Configuration management for the workflow canvas service."""

import os
from enum import Enum
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .core.canvas import CanvasSettings
from .core.exceptions import ConfigurationError

ENV_PREFIX = "WORKFLOW_CANVAS_"


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
    app_name: str = Field(default="Workflow Canvas", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")
    read_only: bool = Field(default=False, description="Reject workflow modifications")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    reload: bool = Field(default=False, description="Enable auto-reload in development")

    # Database settings
    database_url: str = Field(default="sqlite:///./workflow_canvas.db", description="Database connection URL")
    database_echo: bool = Field(default=False, description="Enable SQLAlchemy query logging")

    # Canvas settings
    node_half_width: float = Field(default=50.0, description="Half width of a step's hit box")
    node_half_height: float = Field(default=25.0, description="Half height of a step's hit box")
    edge_hit_radius: float = Field(default=10.0, description="Edge hit tolerance in screen pixels")
    min_zoom: float = Field(default=0.1, description="Smallest allowed zoom")
    max_zoom: float = Field(default=4.0, description="Largest allowed zoom")
    zoom_step: float = Field(default=1.1, description="Zoom factor per wheel notch")

    # Execution settings
    max_parallel_steps: int = Field(default=4, description="Steps executed concurrently per runner")
    max_concurrent_runs: int = Field(default=4, description="Workflow runs executed concurrently")
    step_timeout: Optional[float] = Field(default=300.0, description="Step timeout in seconds, unset for none")

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_structured: bool = Field(default=False, description="Write log files as JSON lines")
    log_max_size: int = Field(default=10485760, description="Maximum log file size in bytes")  # 10MB
    log_backup_count: int = Field(default=5, description="Number of log backup files to keep")

    # Request monitoring
    slow_request_threshold: float = Field(default=5.0, description="Slow request threshold in seconds")

    # Security settings
    cors_origins: List[str] = Field(default=["*"], description="CORS allowed origins")
    cors_methods: List[str] = Field(
        default=["GET", "POST", "PUT", "PATCH", "DELETE"],
        description="CORS allowed methods"
    )

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v):
        """Validate database URL format."""
        if not v:
            raise ValueError("Database URL cannot be empty")

        supported_schemes = ['sqlite', 'postgresql', 'mysql']
        scheme = v.split('://')[0].split('+')[0].lower()

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

    @field_validator('max_parallel_steps', 'max_concurrent_runs')
    @classmethod
    def validate_worker_counts(cls, v):
        if v < 1:
            raise ValueError("Worker counts must be at least 1")
        return v

    @field_validator('step_timeout')
    @classmethod
    def validate_step_timeout(cls, v):
        if v is not None and v <= 0:
            raise ValueError("Step timeout must be positive")
        return v

    @model_validator(mode='after')
    def validate_canvas(self):
        """The canvas settings must form a valid CanvasSettings."""
        try:
            self.canvas_settings()
        except PydanticValidationError as e:
            raise ValueError(f"Invalid canvas settings: {e.errors()[0]['msg']}")
        return self

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return not self.debug and not self.reload

    def canvas_settings(self) -> CanvasSettings:
        return CanvasSettings(
            node_half_width=self.node_half_width,
            node_half_height=self.node_half_height,
            edge_hit_radius=self.edge_hit_radius,
            min_zoom=self.min_zoom,
            max_zoom=self.max_zoom,
            zoom_step=self.zoom_step
        )

    def get_uvicorn_config(self) -> Dict[str, Any]:
        """Get Uvicorn server configuration."""
        return {
            "host": self.host,
            "port": self.port,
            "reload": self.reload,
            "log_level": self.log_level.value.lower(),
            "access_log": self.debug
        }

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from ``WORKFLOW_CANVAS_*`` environment variables."""
        def get_env(key: str, default=None, type_func=str):
            """Get environment variable with type conversion."""
            value = os.getenv(f"{ENV_PREFIX}{key}")
            if value is None:
                return default
            if type_func == bool:
                return str(value).lower() in ('true', '1', 'yes', 'on')
            elif type_func == list:
                return [item.strip() for item in value.split(',') if item.strip()] if value else default
            return type_func(value)

        return cls(
            app_name=get_env("APP_NAME", "Workflow Canvas"),
            app_version=get_env("APP_VERSION", "1.0.0"),
            debug=get_env("DEBUG", False, bool),
            read_only=get_env("READ_ONLY", False, bool),
            host=get_env("HOST", "0.0.0.0"),
            port=get_env("PORT", 8000, int),
            reload=get_env("RELOAD", False, bool),
            database_url=get_env("DATABASE_URL", "sqlite:///./workflow_canvas.db"),
            database_echo=get_env("DATABASE_ECHO", False, bool),
            node_half_width=get_env("NODE_HALF_WIDTH", 50.0, float),
            node_half_height=get_env("NODE_HALF_HEIGHT", 25.0, float),
            edge_hit_radius=get_env("EDGE_HIT_RADIUS", 10.0, float),
            min_zoom=get_env("MIN_ZOOM", 0.1, float),
            max_zoom=get_env("MAX_ZOOM", 4.0, float),
            zoom_step=get_env("ZOOM_STEP", 1.1, float),
            max_parallel_steps=get_env("MAX_PARALLEL_STEPS", 4, int),
            max_concurrent_runs=get_env("MAX_CONCURRENT_RUNS", 4, int),
            step_timeout=get_env("STEP_TIMEOUT", 300.0, float),
            log_level=LogLevel(get_env("LOG_LEVEL", "INFO").upper()),
            log_format=get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            log_file=get_env("LOG_FILE", None),
            log_structured=get_env("LOG_STRUCTURED", False, bool),
            log_max_size=get_env("LOG_MAX_SIZE", 10485760, int),
            log_backup_count=get_env("LOG_BACKUP_COUNT", 5, int),
            slow_request_threshold=get_env("SLOW_REQUEST_THRESHOLD", 5.0, float),
            cors_origins=get_env("CORS_ORIGINS", ["*"], list),
            cors_methods=get_env("CORS_METHODS", ["GET", "POST", "PUT", "PATCH", "DELETE"], list)
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
    """Load configuration from a dotenv file (``.env`` by default) and the environment."""
    global _config

    if config_file and os.path.exists(config_file):
        load_dotenv(config_file)
    elif os.path.exists('.env'):
        load_dotenv('.env')

    _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    global _config
    _config = config


def reset_config():
    """Reset the global configuration instance (mainly for testing)."""
    global _config
    _config = None


def validate_config(config: AppConfig) -> None:
    """
    Validate configuration settings against the environment.

    Raises:
        ConfigurationError: If a required directory cannot be created
    """
    errors = []

    if config.is_sqlite:
        db_path = config.database_url.replace("sqlite:///", "")
        db_dir = os.path.dirname(db_path)
        if db_dir and db_path != ":memory:" and not os.path.exists(db_dir):
            try:
                os.makedirs(db_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create database directory {db_dir}: {e}")

    if config.log_file:
        log_dir = os.path.dirname(config.log_file)
        if log_dir and not os.path.exists(log_dir):
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create log directory {log_dir}: {e}")

    if errors:
        raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")


# Environment-specific configurations
def get_development_config() -> AppConfig:
    """Get development configuration."""
    return AppConfig(
        debug=True,
        reload=True,
        log_level=LogLevel.DEBUG,
        database_echo=True
    )


def get_production_config() -> AppConfig:
    """Get production configuration."""
    return AppConfig(
        debug=False,
        reload=False,
        log_level=LogLevel.INFO,
        database_echo=False,
        cors_origins=[]  # Restrict CORS in production
    )


def get_testing_config() -> AppConfig:
    """Get testing configuration."""
    return AppConfig(
        debug=True,
        database_url="sqlite:///:memory:",
        log_level=LogLevel.WARNING,
        max_parallel_steps=2,
        max_concurrent_runs=2,
        step_timeout=10.0
    )
