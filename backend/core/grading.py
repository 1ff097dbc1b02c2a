"""
grading.py — Percentage to grade-label classification.

Six ordered bands, each with a configurable minimum percentage and label:

  excellent ≥ very_good ≥ good ≥ satisfactory ≥ needs_improvement ≥ basic

plus a distinguished "fail" label used for 0% and for anything below the
basic band. Schools override any subset of thresholds/labels; missing keys
fall back to the defaults below.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from core.errors import InvalidConfigurationError


# Ordered high to low. The classifier walks this order.
GRADE_LEVELS: Tuple[str, ...] = (
    "excellent",
    "very_good",
    "good",
    "satisfactory",
    "needs_improvement",
    "basic",
)

DEFAULT_THRESHOLDS: Dict[str, float] = {
    "excellent": 90.0,
    "very_good": 80.0,
    "good": 60.0,
    "satisfactory": 40.0,
    "needs_improvement": 20.0,
    "basic": 1.0,
}

DEFAULT_LABELS: Dict[str, str] = {
    "excellent": "OUTSTANDING",
    "very_good": "VERY HIGH",
    "good": "HIGH",
    "satisfactory": "GOOD",
    "needs_improvement": "ASPIRING",
    "basic": "BASIC",
    "fail": "UNCLASSIFIED",
}

NOT_TAKEN_LABEL = "N/A"

# Settings documents store these in camelCase.
_KEY_ALIASES = {
    "veryGood": "very_good",
    "needsImprovement": "needs_improvement",
}


@dataclass(frozen=True)
class GradeScale:
    """Immutable grade scale: bands are (min_percentage, level, label), high to low."""

    bands: Tuple[Tuple[float, str, str], ...]
    fail_label: str

    def threshold(self, level: str) -> float:
        for min_pct, lvl, _ in self.bands:
            if lvl == level:
                return min_pct
        raise KeyError(level)

    def label(self, level: str) -> str:
        if level == "fail":
            return self.fail_label
        for _, lvl, lbl in self.bands:
            if lvl == level:
                return lbl
        raise KeyError(level)


# ── Construction ────────────────────────────────────────────────────

def _normalize_keys(values: Optional[Mapping[str, Any]], what: str) -> Dict[str, Any]:
    if values is None:
        return {}
    if not isinstance(values, Mapping):
        raise InvalidConfigurationError(f"Grade {what} must be a mapping, got {type(values).__name__}.")
    known = set(GRADE_LEVELS) | {"fail"}
    normalized = {}
    for key, value in values.items():
        canonical = _KEY_ALIASES.get(key, key)
        if canonical not in known:
            raise InvalidConfigurationError(f"Unknown grade level '{key}' in {what}.")
        normalized[canonical] = value
    return normalized


def grade_scale_from_settings(
    thresholds: Optional[Mapping[str, Any]] = None,
    labels: Optional[Mapping[str, Any]] = None,
) -> GradeScale:
    """
    Build a GradeScale from (possibly partial) school settings.

    Missing or null entries take the documented defaults. Present entries must
    be finite numbers / non-empty strings, and the resulting thresholds must be
    strictly descending; anything else raises InvalidConfigurationError.
    """
    given_thresholds = _normalize_keys(thresholds, "thresholds")
    given_labels = _normalize_keys(labels, "labels")
    given_thresholds.pop("fail", None)

    bands = []
    for level in GRADE_LEVELS:
        raw = given_thresholds.get(level)
        if raw is None:
            raw = DEFAULT_THRESHOLDS[level]
        try:
            min_pct = float(raw)
        except (TypeError, ValueError):
            raise InvalidConfigurationError(f"Threshold for '{level}' is not a number: {raw!r}")
        if not math.isfinite(min_pct):
            raise InvalidConfigurationError(f"Threshold for '{level}' must be finite.")

        label = given_labels.get(level) or DEFAULT_LABELS[level]
        if not isinstance(label, str):
            raise InvalidConfigurationError(f"Label for '{level}' must be a string.")
        bands.append((min_pct, level, label))

    for (higher, h_level, _), (lower, l_level, _) in zip(bands, bands[1:]):
        if not higher > lower:
            raise InvalidConfigurationError(
                f"Grade thresholds must be strictly descending: "
                f"{h_level}={higher} is not above {l_level}={lower}."
            )

    fail_label = given_labels.get("fail") or DEFAULT_LABELS["fail"]
    if not isinstance(fail_label, str):
        raise InvalidConfigurationError("Label for 'fail' must be a string.")

    return GradeScale(bands=tuple(bands), fail_label=fail_label)


DEFAULT_GRADE_SCALE = grade_scale_from_settings()


# ── Classification ──────────────────────────────────────────────────

def classify(percentage: Optional[float], scale: GradeScale = DEFAULT_GRADE_SCALE) -> str:
    """Return the grade label for a percentage; None means the subject was not taken."""
    if percentage is None:
        return NOT_TAKEN_LABEL
    value = float(percentage)
    if math.isnan(value):
        return NOT_TAKEN_LABEL
    if value == 0:
        return scale.fail_label

    for min_pct, _, label in scale.bands:
        if value >= min_pct:
            return label
    return scale.fail_label


def get_all_grade_thresholds(scale: GradeScale = DEFAULT_GRADE_SCALE) -> List[Dict[str, Any]]:
    """Return the full grade scale for legend/reference."""
    legend = []
    for idx, (min_pct, level, label) in enumerate(scale.bands):
        max_pct = 100.0 if idx == 0 else scale.bands[idx - 1][0] - 0.01
        legend.append({
            "level": level,
            "min": min_pct,
            "max": round(max_pct, 2),
            "label": label,
        })
    legend.append({
        "level": "fail",
        "min": 0.0,
        "max": round(scale.bands[-1][0] - 0.01, 2),
        "label": scale.fail_label,
    })
    return legend
