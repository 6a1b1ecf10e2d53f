"""
Configuration management using Pydantic Settings
"""
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# config.py is at: backend/intakeflow/core/config.py
# Project root is: backend/intakeflow/core/../../../
_current_file = Path(__file__).resolve()
_backend_dir = _current_file.parent.parent.parent
_project_root = _backend_dir.parent
ENV_FILE = _project_root / ".env"
# Fallback: try in backend/ directory if not found in project root
if not ENV_FILE.exists():
    ENV_FILE = _backend_dir / ".env"
if ENV_FILE.exists():
    load_dotenv(ENV_FILE, override=False)


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "IntakeFlow"
    app_env: str = Field(default="development", description="Application environment")
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, ge=1, le=65535, description="API port")
    allowed_origins: str = Field(
        default="http://localhost:8000",
        description="Allowed CORS origins (comma-separated)"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_sqlalchemy: bool = Field(default=False, description="Enable SQLAlchemy query logging")
    log_uvicorn_access: bool = Field(default=False, description="Enable Uvicorn access logging")
    log_module_levels: Optional[str] = Field(
        default=None,
        description='Module-specific log levels (JSON string, e.g., {"intakeflow.components": "DEBUG"})'
    )
    log_format: str = Field(
        default="json",
        description="Log format: 'json' for structured logging, 'text' for plain text"
    )
    log_file_enabled: bool = Field(default=True, description="Enable file logging")
    log_file_path: str = Field(
        default="logs/intakeflow.log",
        description="Path to log file (relative to project root)"
    )
    log_file_rotation: str = Field(
        default="midnight",
        description="Log file rotation: 'midnight' or 'W0'..'W6' (weekly)"
    )
    log_file_retention: int = Field(default=30, ge=1, description="Number of rotated log files to keep")
    log_sensitive_data: bool = Field(
        default=False,
        description="Enable logging of sensitive data (passwords, tokens) - NOT RECOMMENDED"
    )

    # Database (audit sink)
    database_url: str = Field(
        default="sqlite:///./intakeflow.db",
        description="SQLAlchemy database URL for the audit log"
    )
    database_pool_size: int = Field(default=10, ge=1, description="Database pool size")
    database_max_overflow: int = Field(default=5, ge=0, description="Database max overflow")

    # Tracing
    enable_tracing: bool = Field(default=True, description="Enable OpenTelemetry tracing")
    tracing_service_name: str = Field(default="intakeflow", description="Service name for tracing")
    tracing_exporter: str = Field(default="console", description="Tracing exporter: 'console' or 'otlp'")
    tracing_otlp_endpoint: Optional[str] = Field(
        default=None,
        description="OTLP endpoint URL (e.g., http://localhost:4318/v1/traces)"
    )

    # AI classification backend (Ollama-compatible chat API)
    llm_url: str = Field(default="http://localhost:11434", description="AI backend base URL")
    llm_model: str = Field(default="llama3.1:8b", description="Model used for classification")
    llm_timeout_seconds: int = Field(default=30, ge=1, le=300, description="Per-call timeout for the AI backend")
    llm_temperature: float = Field(default=0.2, ge=0.0, le=1.0)
    llm_top_p: float = Field(default=0.8, ge=0.0, le=1.0)
    llm_num_ctx: int = Field(default=4096, ge=512, le=32768)
    llm_max_retries: int = Field(default=2, ge=1, le=5, description="Attempts per AI call on timeout")

    # External collaborators
    minting_service_url: str = Field(default="http://localhost:8101", description="Identifier minting service")
    minting_token: Optional[str] = Field(default=None, description="Bearer token for the minting service")
    trust_authority_url: str = Field(default="http://localhost:8102", description="Trust authority")
    trust_authority_token: Optional[str] = Field(default=None, description="Bearer token for the trust authority")
    thread_sync_url: str = Field(default="http://localhost:8103", description="Case/thread sync collaborator")
    thread_sync_token: Optional[str] = Field(default=None, description="Bearer token for thread sync")
    collaborator_timeout_seconds: float = Field(default=5.0, gt=0, le=60, description="Timeout for collaborator calls")

    # Pipeline policy
    trust_threshold: float = Field(default=50.0, ge=0.0, description="Composite score cited when trust is refused")
    trust_content_limit: int = Field(default=2000, ge=64, description="Max content chars sent to the trust authority")
    classifier_content_limit: int = Field(default=4000, ge=64, description="Max content chars sent to the AI backend")
    audit_content_limit: int = Field(default=500, ge=0, description="Max content chars stored in an audit record")
    audit_retain_raw: bool = Field(default=False, description="Store raw payloads verbatim in audit records")
    audit_sink: str = Field(default="database", description="Audit sink: 'database' or 'memory'")
    audit_memory_max_records: int = Field(default=10000, ge=1, description="Records kept by the in-memory audit sink")
    quarantine_route: str = Field(default="quarantine", description="Destination for untrusted input")
    default_route: str = Field(default="intake", description="Destination used when nothing more specific applies")
    auto_response_categories: str = Field(
        default="",
        description="Comma-separated categories allowed to auto-respond (empty = no restriction)"
    )

    @field_validator("audit_sink")
    @classmethod
    def validate_audit_sink(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("database", "memory"):
            raise ValueError("audit_sink must be 'database' or 'memory'")
        return v

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def auto_response_categories_list(self) -> List[str]:
        return [c.strip().lower() for c in self.auto_response_categories.split(",") if c.strip()]

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
