"""
Incentive Engine - Configuration Settings

This module handles all application configuration using Pydantic Settings.
Environment variables are loaded from .env file.
"""

from functools import lru_cache
from typing import Dict, Literal, Optional
from uuid import UUID

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ===========================================
    # APPLICATION CONFIGURATION
    # ===========================================
    debug: bool = False

    # ===========================================
    # DATABASE CONFIGURATION
    # ===========================================
    database_url_async: str = "sqlite+aiosqlite:///./incentive_engine.db"
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # ===========================================
    # REDIS / CELERY CONFIGURATION
    # ===========================================
    redis_url: str = "redis://localhost:6379/0"
    celery_timezone: str = "Asia/Kolkata"

    # ===========================================
    # PAYOUT DEFAULTS
    # ===========================================
    default_currency: str = "INR"

    # ===========================================
    # APPROVAL WORKFLOW
    # ===========================================
    max_approval_levels: int = 5

    # Approver per level, used by background workers
    approver_ids_by_level: Dict[int, UUID] = Field(default_factory=dict)

    # Per-level SLA used to stamp expires_at on new approvals
    approval_sla_hours_by_level: Dict[int, float] = Field(
        default_factory=lambda: {1: 72.0, 2: 48.0, 3: 24.0}
    )

    # ===========================================
    # ESCALATION
    # ===========================================
    approval_sla_hours: float = 72.0
    sla_warning_ratio: float = 0.75
    escalation_policy: Literal["auto", "alert_only"] = "auto"
    escalation_approver_id: Optional[UUID] = None
    escalation_scan_interval_minutes: int = 30

    @field_validator("default_currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("sla_warning_ratio")
    @classmethod
    def _ratio_in_range(cls, value: float) -> float:
        if not 0 < value < 1:
            raise ValueError("sla_warning_ratio must be between 0 and 1")
        return value

    def sla_hours_for_level(self, level: int) -> float:
        """SLA hours for an approval level, falling back to the global SLA."""
        return self.approval_sla_hours_by_level.get(level, self.approval_sla_hours)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every call.
    """
    return Settings()


# Export settings instance
settings = get_settings()
