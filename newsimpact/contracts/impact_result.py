"""News-impact classification contract.

The classifier forces the LLM to call a single function whose arguments must
match IMPACT_SCHEMA. This module defines:
- The enums and the JSON Schema (sent as tool parameters and used for validation)
- A normalized ImpactFields record built from validated arguments
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from jsonschema import Draft202012Validator


IMPACT_DIRECTIONS: Tuple[str, ...] = ("positive", "negative", "mixed", "unclear")

IMPACT_CATEGORIES: Tuple[str, ...] = (
    "EARNINGS",
    "MERGER_ACQUISITION",
    "REGULATORY_LEGAL",
    "MACRO",
    "ANALYST_RATING",
    "PRODUCT",
    "MANAGEMENT_CHANGE",
    "SUPPLY_CHAIN",
    "INSIDER_TRADING",
    "OTHER",
)

IMPACT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["impact", "direction", "category", "points", "confidence"],
    "properties": {
        "impact": {"type": "integer", "minimum": 1, "maximum": 10},
        "direction": {"type": "string", "enum": list(IMPACT_DIRECTIONS)},
        "category": {"type": "string", "enum": list(IMPACT_CATEGORIES)},
        "points": {
            "type": "array",
            "minItems": 3,
            "maxItems": 6,
            "items": {"type": "string", "minLength": 1},
        },
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
    },
}


_VALIDATOR = Draft202012Validator(IMPACT_SCHEMA)


def validate_impact_payload(payload: Any) -> List[str]:
    """Return a list of human-readable validation errors (empty means valid)."""
    errors = []
    for e in sorted(_VALIDATOR.iter_errors(payload), key=lambda x: list(x.path)):
        path = ".".join(str(p) for p in e.path) if e.path else "<root>"
        errors.append(f"{path}: {e.message}")
    return errors


@dataclass(frozen=True)
class ImpactFields:
    impact: int
    direction: str
    category: str
    points: Tuple[str, ...]
    confidence: float

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ImpactFields":
        """Build from an already-validated payload."""
        return cls(
            impact=int(payload["impact"]),
            direction=payload["direction"],
            category=payload["category"],
            points=tuple(str(p) for p in payload["points"]),
            confidence=float(payload["confidence"]),
        )
