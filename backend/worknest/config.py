from __future__ import annotations

import os
from pathlib import Path
from typing import Dict

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class IncentiveRules(BaseModel):
    """Fixed amounts and thresholds used by the incentive calculator."""

    base_amount: float = 5000
    products_bonus: float = 1000
    products_bonus_threshold: int = 3
    # hours -> bonus, highest matching tier wins
    attendance_tiers: Dict[int, float] = Field(default_factory=lambda: {200: 2000, 160: 1000, 140: 500})
    checklist_bonus: float = 1000
    checklist_bonus_ratio: float = 0.8
    loyalty_bonus: float = 2000
    loyalty_months: int = 6
    completed_projects_bonus: float = 2000

    missing_daily_update_rate: float = 200
    missing_daily_update_grace: int = 3
    team_meeting_rate: float = 300
    team_meeting_grace: int = 3
    internal_meeting_rate: float = 200
    internal_meeting_grace: int = 3
    client_meeting_rate: float = 300
    client_meeting_grace: int = 1

    # minimum absent days -> fine; 14+ is a deduction
    absence_tiers: Dict[int, float] = Field(
        default_factory=lambda: {14: -500, 7: 1000, 5: 1500, 3: 2000, 2: 2500, 1: 3000}
    )

    training_months: int = 3
    no_fine_products_threshold: int = 3
    no_fine_client_projects_threshold: int = 3
    no_payment_min_hours: float = 100
    no_payment_max_absent_days: int = 4
    default_hours_per_record: float = 8


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="WN_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )
    """Application runtime configuration."""

    app_name: str = "WorkNest"
    environment: str = "development"
    host: str = os.getenv("WN_HOST", "127.0.0.1")
    port: int = int(os.getenv("WN_PORT", "8080"))
    log_level: str = os.getenv("WN_LOG_LEVEL", "INFO")

    sqlite_path: Path = Path(os.getenv("WN_SQLITE_PATH", "./data/worknest.db"))

    # Business timezone for calendar-day semantics
    timezone: str = os.getenv("WN_TIMEZONE", "Asia/Kolkata")

    daily_task_deadline_hour: int = int(os.getenv("WN_DAILY_TASK_DEADLINE_HOUR", "10"))
    daily_task_deadline_minute: int = int(os.getenv("WN_DAILY_TASK_DEADLINE_MINUTE", "0"))
    daily_task_fine_amount: float = float(os.getenv("WN_DAILY_TASK_FINE_AMOUNT", "500"))

    incentives: IncentiveRules = Field(default_factory=IncentiveRules)

    @field_validator("daily_task_deadline_hour")
    @classmethod
    def _check_hour(cls, value: int) -> int:
        if not 0 <= value <= 23:
            raise ValueError("Deadline hour must be between 0 and 23")
        return value

    @field_validator("daily_task_deadline_minute")
    @classmethod
    def _check_minute(cls, value: int) -> int:
        if not 0 <= value <= 59:
            raise ValueError("Deadline minute must be between 0 and 59")
        return value


settings = Settings()

# Ensure essential directories exist
settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
