"""Statistics helpers for the experiment framework.

Plain-Python implementations of the small amount of statistics the A/B
harness needs. The normal CDF uses the Abramowitz and Stegun 7.1.26
approximation of erf, which is accurate to about 1.5e-7.

Key Components:
    - describe: Descriptive statistics for a list of metric values
    - two_proportion_z_test: Pooled two-proportion z-test (two-tailed)
    - apply_correction: Bonferroni or no multiple-comparison correction
    - categorize_effect_size / variant_recommendation: Effect labelling
    - estimate_power: Coarse sample-size based power estimate
"""

from __future__ import annotations

import math
from typing import Any, Sequence

EFFECT_SIZE_THRESHOLDS = {"small": 0.2, "medium": 0.5, "large": 0.8}

# Abramowitz and Stegun 7.1.26
_A1 = 0.254829592
_A2 = -0.284496736
_A3 = 1.421413741
_A4 = -1.453152027
_A5 = 1.061405429
_P = 0.3275911


def median(sorted_values: Sequence[float]) -> float:
    n = len(sorted_values)
    mid = n // 2
    if n % 2 == 0:
        return (sorted_values[mid - 1] + sorted_values[mid]) / 2
    return sorted_values[mid]


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Linearly interpolated percentile of an already sorted sequence."""
    index = p * (len(sorted_values) - 1)
    lower = math.floor(index)
    upper = math.ceil(index)
    if lower == upper:
        return sorted_values[lower]
    weight = index - lower
    return sorted_values[lower] * (1 - weight) + sorted_values[upper] * weight


def describe(values: Sequence[float]) -> dict[str, float]:
    """Return count, mean, median, population stddev, min, max, p25 and p75."""
    if not values:
        return {"count": 0, "mean": 0, "median": 0, "stddev": 0, "min": 0, "max": 0}

    ordered = sorted(values)
    n = len(values)
    mean = sum(values) / n
    variance = sum((v - mean) ** 2 for v in values) / n
    return {
        "count": n,
        "mean": mean,
        "median": median(ordered),
        "stddev": math.sqrt(variance),
        "min": ordered[0],
        "max": ordered[-1],
        "p25": percentile(ordered, 0.25),
        "p75": percentile(ordered, 0.75),
    }


def erf(x: float) -> float:
    sign = 1 if x >= 0 else -1
    x = abs(x)
    t = 1.0 / (1.0 + _P * x)
    y = 1.0 - (((((_A5 * t + _A4) * t) + _A3) * t + _A2) * t + _A1) * t * math.exp(-x * x)
    return sign * y


def normal_cdf(z: float) -> float:
    return 0.5 * (1 + erf(z / math.sqrt(2)))


def two_proportion_z_test(
    control_successes: int,
    control_trials: int,
    treatment_successes: int,
    treatment_trials: int,
    alpha: float = 0.05,
) -> dict[str, Any]:
    """Two-tailed pooled z-test for a difference in proportions.

    Returns:
        Dict with p_value, z_score, significant and confidence. When either
        group has no trials the test is skipped and p_value is 1.
    """
    if control_trials == 0 or treatment_trials == 0:
        return {"p_value": 1.0, "z_score": 0.0, "significant": False, "confidence": 0.0}

    p1 = control_successes / control_trials
    p2 = treatment_successes / treatment_trials
    pooled = (control_successes + treatment_successes) / (control_trials + treatment_trials)

    se = math.sqrt(pooled * (1 - pooled) * (1 / control_trials + 1 / treatment_trials))
    z = (p2 - p1) / se if se > 0 else 0.0
    p_value = 2 * (1 - normal_cdf(abs(z)))

    return {
        "p_value": p_value,
        "z_score": z,
        "significant": p_value < alpha,
        "confidence": 1 - p_value,
    }


def categorize_effect_size(effect: float) -> str:
    if effect >= EFFECT_SIZE_THRESHOLDS["large"]:
        return "large"
    if effect >= EFFECT_SIZE_THRESHOLDS["medium"]:
        return "medium"
    if effect >= EFFECT_SIZE_THRESHOLDS["small"]:
        return "small"
    return "negligible"


def variant_recommendation(significant: bool, relative_effect: float) -> str:
    if not significant:
        return "inconclusive"
    if relative_effect > 0.05:
        return "treatment_wins"
    if relative_effect < -0.05:
        return "control_wins"
    return "no_practical_difference"


def apply_correction(
    comparisons: list[dict[str, Any]],
    alpha: float = 0.05,
    method: str = "bonferroni",
) -> list[dict[str, Any]]:
    """Attach corrected p-values to each comparison.

    Each returned comparison is a copy with ``corrected_p_value`` and
    ``significant_after_correction`` keys added.
    """
    n = len(comparisons)
    corrected = []
    for comparison in comparisons:
        p_value = comparison["significance"]["p_value"]
        if method == "bonferroni":
            extra = {
                "corrected_p_value": min(p_value * n, 1.0),
                "significant_after_correction": p_value * n < alpha,
            }
        else:
            extra = {
                "corrected_p_value": p_value,
                "significant_after_correction": comparison["significance"]["significant"],
            }
        corrected.append({**comparison, **extra})
    return corrected


def estimate_power(total_sample: int, effect: float) -> float:
    """Coarse power estimate from the total sample and absolute effect."""
    if total_sample < 30:
        return 0.3
    if total_sample < 100:
        return 0.5
    if total_sample < 500:
        return 0.7
    return 0.8 + min(abs(effect) * 2, 0.15)


__all__ = [
    "describe",
    "median",
    "percentile",
    "erf",
    "normal_cdf",
    "two_proportion_z_test",
    "categorize_effect_size",
    "variant_recommendation",
    "apply_correction",
    "estimate_power",
    "EFFECT_SIZE_THRESHOLDS",
]
