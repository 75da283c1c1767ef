"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="agency-sla-engine", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/agency_sla",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Breach Detection ==========
    breach_scan_enabled: bool = Field(
        default=True,
        description="Run the periodic breach scan in this process"
    )
    breach_scan_interval_seconds: int = Field(
        default=60,
        description="Seconds between breach scans",
        ge=10
    )

    # ========== Business Calendar ==========
    business_timezone: str = Field(
        default="UTC",
        description="IANA timezone in which agency working hours are expressed"
    )
    calendar_lookahead_days: int = Field(
        default=90,
        description="Days of calendar overrides loaded for a deadline calculation",
        ge=1
    )
    calendar_max_iterations: int = Field(
        default=365,
        description="Day-walk cap before falling back to calendar time",
        ge=1
    )

    # ========== Seed Data ==========
    sla_seed_path: Optional[Path] = Field(
        default=None,
        description="Optional YAML file with policies, calendars and escalation matrices"
    )

    # ========== Collaborator Events ==========
    event_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook receiving breach and escalation events"
    )
    event_webhook_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for webhook calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class BreachType(str):
    """SLA commitments that can be breached."""
    RESPONSE = "RESPONSE"
    RESOLUTION = "RESOLUTION"


class CommitmentState(str):
    """Lifecycle of a single SLA commitment."""
    PENDING = "PENDING"
    MET = "MET"
    MISSED = "MISSED"
    BREACHED = "BREACHED"


class TicketStatus(str):
    """Ticket statuses owned by the ticket collaborator."""
    OPEN = "OPEN"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    ESCALATED = "ESCALATED"
    PENDING_CITIZEN = "PENDING_CITIZEN"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"
    REOPENED = "REOPENED"
    REJECTED = "REJECTED"


class TriggeredBy(str):
    """Origin of an escalation event."""
    SYSTEM = "SYSTEM"


class EventType(str):
    """Event names published to collaborators."""
    BREACH = "sla.breach"
    ESCALATION = "sla.escalation"


# ========== Lists for validation ==========

VALID_BREACH_TYPES = [BreachType.RESPONSE, BreachType.RESOLUTION]
CLOSED_TICKET_STATUSES = [TicketStatus.CLOSED, TicketStatus.REJECTED]
