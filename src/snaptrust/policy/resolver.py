"""Policy resolver — the single source of engine policy constants.

Policy lives in ``config/policy.json``. Any key missing from the file
falls back to DEFAULT_POLICY. The resolver validates the whole policy at
load time and fails closed (ValueError) on anything that would break an
engine invariant, e.g. a bad-exit tier table that is not monotonic.

Environment (read through a ``.env`` file when present):
    SNAPTRUST_CONFIG_DIR — directory holding policy.json
    SNAPTRUST_DATA_DIR   — directory for state.json / events.jsonl (CLI)
"""

from __future__ import annotations

import copy
import json
import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from snaptrust.models.notice import BadExitTier


POLICY_FILENAME = "policy.json"
CONFIG_DIR_ENV = "SNAPTRUST_CONFIG_DIR"
DATA_DIR_ENV = "SNAPTRUST_DATA_DIR"

DEFAULT_POLICY: dict[str, Any] = {
    "bad_exit_tiers": [
        {"tier": 1, "penalty_percent": 15, "duration_days": 30},
        {"tier": 2, "penalty_percent": 25, "duration_days": 60},
        {
            "tier": 3,
            "penalty_percent": 35,
            "duration_days": 90,
            "suspension_days": 45,
            "blacklist_after_suspension": True,
            "appeal_window_days": 90,
        },
    ],
    "default_notice_days": 14,
    "submission_window_hours": 48,
    "badge_level_thresholds": [4, 12, 24, 52, 78],
    "badge_level_overrides": {},
    "fact_weights": {
        "checkin": 1.0,
        "period_good_standing": 1.0,
        "period_shortfall": 1.0,
        "exit_good": 1.0,
        "exit_bad": 3.0,
    },
    "dispute_limit_per_month": 1,
}

_FACT_WEIGHT_KEYS = frozenset(DEFAULT_POLICY["fact_weights"])
MAX_BADGE_LEVEL = 5


class PolicyResolver:
    """Typed, validated access to policy constants.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        tiers = resolver.bad_exit_tiers()
        hours = resolver.submission_window_hours()
    """

    def __init__(self, policy: dict[str, Any]) -> None:
        merged = copy.deepcopy(DEFAULT_POLICY)
        for key, value in policy.items():
            if key == "fact_weights":
                merged["fact_weights"].update(value)
            else:
                merged[key] = value
        self._policy = merged
        try:
            self._tiers = _parse_tiers(merged["bad_exit_tiers"])
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid policy: malformed bad_exit_tiers ({e})") from e
        errors = self._validate()
        if errors:
            raise ValueError("Invalid policy: " + "; ".join(errors))

    @classmethod
    def default(cls) -> PolicyResolver:
        return cls({})

    @classmethod
    def from_dict(cls, policy: dict[str, Any]) -> PolicyResolver:
        return cls(policy)

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load policy.json from a config directory.

        A missing file means defaults; a malformed file is an error.
        """
        path = Path(config_dir) / POLICY_FILENAME
        if not path.exists():
            return cls.default()
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a JSON object")
        return cls(data)

    @classmethod
    def from_env(cls, dotenv_path: Optional[Path] = None) -> PolicyResolver:
        load_dotenv(dotenv_path)
        config_dir = os.environ.get(CONFIG_DIR_ENV)
        if config_dir:
            return cls.from_config_dir(Path(config_dir))
        return cls.default()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def bad_exit_tiers(self) -> list[BadExitTier]:
        return list(self._tiers)

    def default_notice_days(self) -> int:
        return int(self._policy["default_notice_days"])

    def submission_window_hours(self) -> int:
        return int(self._policy["submission_window_hours"])

    def dispute_limit_per_month(self) -> int:
        return int(self._policy["dispute_limit_per_month"])

    def badge_level_thresholds(self, badge_id: Optional[str] = None) -> list[int]:
        """Total-count thresholds for levels 1..5, per-badge override first."""
        overrides = self._policy["badge_level_overrides"]
        if badge_id is not None and badge_id in overrides:
            return [int(x) for x in overrides[badge_id]]
        return [int(x) for x in self._policy["badge_level_thresholds"]]

    def fact_weight(self, name: str) -> float:
        if name not in _FACT_WEIGHT_KEYS:
            raise KeyError(f"Unknown fact weight: {name}")
        return float(self._policy["fact_weights"][name])

    def as_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._policy)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self) -> list[str]:
        errors: list[str] = []
        errors.extend(_validate_tiers(self._tiers))

        if self.default_notice_days() < 0:
            errors.append("default_notice_days must be >= 0")
        if self.submission_window_hours() < 0:
            errors.append("submission_window_hours must be >= 0")
        if self.dispute_limit_per_month() < 1:
            errors.append("dispute_limit_per_month must be >= 1")

        thresholds = {None: self._policy["badge_level_thresholds"]}
        thresholds.update(self._policy["badge_level_overrides"])
        for badge_id, values in thresholds.items():
            label = badge_id or "badge_level_thresholds"
            if len(values) != MAX_BADGE_LEVEL:
                errors.append(f"{label}: expected {MAX_BADGE_LEVEL} thresholds, got {len(values)}")
                continue
            if any(int(v) <= 0 for v in values):
                errors.append(f"{label}: thresholds must be positive")
            if any(int(b) <= int(a) for a, b in zip(values, values[1:])):
                errors.append(f"{label}: thresholds must be strictly increasing")

        for name, weight in self._policy["fact_weights"].items():
            if name not in _FACT_WEIGHT_KEYS:
                errors.append(f"Unknown fact weight: {name}")
            elif float(weight) < 0:
                errors.append(f"fact weight {name} must be >= 0")
        return errors


def _parse_tiers(raw: list[dict[str, Any]]) -> list[BadExitTier]:
    tiers = [
        BadExitTier(
            tier=int(row["tier"]),
            penalty_percent=int(row["penalty_percent"]),
            duration_days=int(row["duration_days"]),
            suspension_days=int(row.get("suspension_days", 0)),
            blacklist_after_suspension=bool(row.get("blacklist_after_suspension", False)),
            appeal_window_days=int(row.get("appeal_window_days", 0)),
        )
        for row in raw
    ]
    return sorted(tiers, key=lambda t: t.tier)


def _validate_tiers(tiers: list[BadExitTier]) -> list[str]:
    """The table must start at 1, be contiguous, and never regress."""
    if not tiers:
        return ["bad_exit_tiers must not be empty"]
    errors: list[str] = []
    for expected, tier in enumerate(tiers, 1):
        if tier.tier != expected:
            errors.append(f"bad_exit_tiers must be numbered 1..n, found {tier.tier} at {expected}")
        if not 0 <= tier.penalty_percent <= 100:
            errors.append(f"tier {tier.tier}: penalty_percent must be within 0..100")
    for prev, cur in zip(tiers, tiers[1:]):
        if cur.penalty_percent < prev.penalty_percent:
            errors.append(f"tier {cur.tier}: penalty_percent regresses")
        if cur.duration_days < prev.duration_days:
            errors.append(f"tier {cur.tier}: duration_days regresses")
        if cur.suspension_days < prev.suspension_days:
            errors.append(f"tier {cur.tier}: suspension_days regresses")
        if prev.blacklist_after_suspension and not cur.blacklist_after_suspension:
            errors.append(f"tier {cur.tier}: blacklist flag regresses")
    return errors
