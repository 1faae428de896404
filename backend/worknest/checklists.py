from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .models import ChecklistConfig
from .utils import as_amount, normalize_identifier_list, normalize_label


@dataclass(frozen=True)
class ChecklistItem:
    label: str
    bonus_points: float = 0.0
    bonus_currency: float = 0.0
    fine_points: float = 0.0
    fine_currency: float = 0.0

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "ChecklistItem":
        return cls(
            label=str(raw.get("label") or ""),
            bonus_points=as_amount(raw.get("bonus_points")),
            bonus_currency=as_amount(raw.get("bonus_currency")),
            fine_points=as_amount(raw.get("fine_points")),
            fine_currency=as_amount(raw.get("fine_currency")),
        )

    @property
    def has_bonus(self) -> bool:
        return self.bonus_points > 0 or self.bonus_currency > 0


@dataclass
class ChecklistScore:
    total_points: float = 0.0
    total_currency: float = 0.0
    earned_points: float = 0.0
    earned_currency: float = 0.0
    fine_points: float = 0.0
    fine_currency: float = 0.0


def _skill_matches(config_skill: Optional[str], skills: Sequence[str]) -> bool:
    wanted = normalize_label(config_skill)
    if not wanted:
        return False
    for skill in skills:
        candidate = normalize_label(skill)
        if candidate and (wanted in candidate or candidate in wanted):
            return True
    return False


def resolve_config(
    configs: Iterable[ChecklistConfig],
    employee_id: int,
    skills: Optional[Sequence[str]] = None,
) -> Optional[ChecklistConfig]:
    """Pick the employee's checklist config: custom, then skill-based, then global."""
    configs = list(configs)
    for config in configs:
        if config.type == "custom" and employee_id in normalize_identifier_list(config.employee_ids):
            return config
    for config in configs:
        if config.type == "skill" and _skill_matches(config.skill, skills or []):
            return config
    for config in configs:
        if config.type == "global":
            return config
    return None


def items_by_label(config: Optional[ChecklistConfig]) -> Dict[str, ChecklistItem]:
    if config is None:
        return {}
    items: Dict[str, ChecklistItem] = {}
    for raw in config.items or []:
        if not isinstance(raw, Mapping):
            continue
        item = ChecklistItem.from_raw(raw)
        key = normalize_label(item.label)
        if key:
            items.setdefault(key, item)
    return items


def score_checklist(entries: List[Mapping[str, Any]], items: Dict[str, ChecklistItem]) -> ChecklistScore:
    score = ChecklistScore()
    for entry in entries or []:
        if not isinstance(entry, Mapping):
            continue
        item = items.get(normalize_label(entry.get("label")))
        if item is None:
            continue
        if item.has_bonus:
            score.total_points += item.bonus_points
            score.total_currency += item.bonus_currency
        if entry.get("checked"):
            score.earned_points += item.bonus_points
            score.earned_currency += item.bonus_currency
        else:
            score.fine_points += item.fine_points
            score.fine_currency += item.fine_currency
    return score
