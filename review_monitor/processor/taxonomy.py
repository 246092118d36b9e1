"""Violation taxonomy: normalizes raw classifier findings.

Two stored taxonomies exist. ``rich`` keeps one of a fixed list of violation
types. ``collapsed`` stores a single literal type and moves the classifier's
own type into ``category``.
"""

from typing import Any, Dict, Iterable, List, Optional

from review_monitor.models.config import RICH_VIOLATION_TYPES
from review_monitor.models.data_models import ViolationFinding


LEVELS = ("Low", "Medium", "High")
ACTIONS = ("Keep", "Edit", "Remove")

# Migration defaults for values outside the allowed sets
DEFAULT_TYPE = "Policy Violation"
DEFAULT_SEVERITY = "Medium"
DEFAULT_USER_BENEFIT = "Low"
DEFAULT_ACTION = "Keep"


def _match(value: Any, allowed: Iterable[str]) -> Optional[str]:
    """Case-insensitive lookup of value in allowed, returning the canonical spelling."""
    if not isinstance(value, str):
        return None
    wanted = value.strip().lower()
    for option in allowed:
        if option.lower() == wanted:
            return option
    return None


def normalize_severity(value: Any) -> str:
    if isinstance(value, str) and value.strip().lower() == "critical":
        return "High"
    return _match(value, LEVELS) or DEFAULT_SEVERITY


def normalize_user_benefit(value: Any) -> str:
    return _match(value, LEVELS) or DEFAULT_USER_BENEFIT


def normalize_action(value: Any) -> str:
    return _match(value, ACTIONS) or DEFAULT_ACTION


class ViolationTaxonomy:
    """Maps raw classifier findings onto the configured stored taxonomy."""

    def __init__(
        self,
        mode: str = "rich",
        types: Optional[List[str]] = None,
        collapsed_type: str = "Content Violation"
    ):
        if mode not in ("rich", "collapsed"):
            raise ValueError(f"Unknown taxonomy mode: {mode}")
        self.mode = mode
        self.types = list(types or RICH_VIOLATION_TYPES)
        self.collapsed_type = collapsed_type

    @classmethod
    def from_config(cls, config) -> "ViolationTaxonomy":
        return cls(
            mode=config.violation_taxonomy,
            types=config.violation_types,
            collapsed_type=config.collapsed_violation_type,
        )

    def normalize(self, raw: Dict[str, Any]) -> ViolationFinding:
        """
        Build a ViolationFinding from one raw classifier finding.

        Accepts camelCase and snake_case keys (``userBenefit`` / ``user_benefit``).
        """
        raw_type = raw.get("type") or raw.get("violation_type") or raw.get("category")
        raw_type = raw_type.strip() if isinstance(raw_type, str) else None

        if self.mode == "collapsed":
            violation_type = self.collapsed_type
            category = raw_type or raw.get("violation_category")
        else:
            fallback = DEFAULT_TYPE if DEFAULT_TYPE in self.types else self.types[0]
            violation_type = _match(raw_type, self.types) or fallback
            category = None

        details = raw.get("details") or raw.get("explanation") or ""
        return ViolationFinding(
            type=violation_type,
            category=category,
            severity=normalize_severity(raw.get("severity")),
            user_benefit=normalize_user_benefit(
                raw.get("userBenefit", raw.get("user_benefit"))
            ),
            action=normalize_action(raw.get("action")),
            details=str(details).strip(),
        )

    def normalize_all(self, raw_findings: Any) -> List[ViolationFinding]:
        """Normalize a findings list, dropping entries that are not objects."""
        if not isinstance(raw_findings, list):
            return []
        return [self.normalize(raw) for raw in raw_findings if isinstance(raw, dict)]
