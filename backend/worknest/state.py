from __future__ import annotations

import datetime as dt
from threading import RLock
from typing import Any, Dict

from sqlalchemy.orm import Session

from .config import Settings
from .models import AppSetting

FINE_CONTROL_KEYS = ("daily_task_deadline_hour", "daily_task_deadline_minute", "daily_task_fine_amount")


class RuntimeState:
    """Mutable runtime configuration that can be adjusted at runtime."""

    def __init__(self, base_settings: Settings):
        self._lock = RLock()
        self.daily_task_deadline_hour: int = base_settings.daily_task_deadline_hour
        self.daily_task_deadline_minute: int = base_settings.daily_task_deadline_minute
        self.daily_task_fine_amount: float = base_settings.daily_task_fine_amount

    @property
    def daily_task_deadline(self) -> dt.time:
        with self._lock:
            return dt.time(self.daily_task_deadline_hour, self.daily_task_deadline_minute)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "daily_task_deadline_hour": self.daily_task_deadline_hour,
                "daily_task_deadline_minute": self.daily_task_deadline_minute,
                "daily_task_fine_amount": self.daily_task_fine_amount,
            }

    def apply(self, updates: Dict[str, Any]) -> None:
        with self._lock:
            if updates.get("daily_task_deadline_hour") is not None:
                self.daily_task_deadline_hour = min(23, max(0, int(updates["daily_task_deadline_hour"])))
            if updates.get("daily_task_deadline_minute") is not None:
                self.daily_task_deadline_minute = min(59, max(0, int(updates["daily_task_deadline_minute"])))
            if updates.get("daily_task_fine_amount") is not None:
                self.daily_task_fine_amount = max(0.0, float(updates["daily_task_fine_amount"]))

    def load_from_db(self, session: Session) -> None:
        records = session.query(AppSetting).filter(AppSetting.key.in_(FINE_CONTROL_KEYS)).all()
        decoded: Dict[str, Any] = {}
        for record in records:
            if not record.value:
                continue
            if record.key == "daily_task_fine_amount":
                decoded[record.key] = float(record.value)
            else:
                decoded[record.key] = int(record.value)
        if decoded:
            self.apply(decoded)

    def persist(self, session: Session, updates: Dict[str, Any]) -> None:
        for key, value in updates.items():
            if key not in FINE_CONTROL_KEYS or value is None:
                continue
            value = str(value)
            record = session.query(AppSetting).filter(AppSetting.key == key).one_or_none()
            if record:
                record.value = value
            else:
                session.add(AppSetting(key=key, value=value))
        session.commit()


def update_fine_control(db: Session, state: RuntimeState, updates: Dict[str, Any]) -> Dict[str, Any]:
    state.apply(updates)
    state.persist(db, state.snapshot())
    return state.snapshot()
