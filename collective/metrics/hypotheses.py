"""Validation of the research hypotheses against recorded metrics.

Each validator reads the events of one hypothesis out of a list of
metrics (as returned by ``MetricsCollector.retrieve``) and compares them
with the targets from the hypothesis configuration:

    - h1_jit_loading:  ``jit`` context sizes against the baseline average
    - h2_hub_spoke:    ``routing`` events against blocked ``directive`` events
    - h3_tdd_handoffs: ``contract`` validation results and ``handoff`` test usage

A hypothesis is validated only when its measured value meets the target
and the confidence for its sample size meets ``confidence_threshold``.
"""

from __future__ import annotations

from typing import Any, Callable

ConfidenceFn = Callable[[int], float]


def event_data(metrics: list[dict[str, Any]], event_type: str) -> list[dict[str, Any]]:
    return [
        m["data"]
        for m in metrics
        if m.get("event_type") == event_type and isinstance(m.get("data"), dict)
    ]


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def _result(
    name: str,
    validated: bool,
    confidence: float,
    evidence: list[str],
    metrics: dict[str, Any],
    criteria: dict[str, Any],
) -> dict[str, Any]:
    return {
        "hypothesis": name,
        "validated": validated,
        "confidence": confidence,
        "evidence": evidence,
        "metrics": metrics,
        "criteria": criteria,
    }


def _confidence_evidence(confidence: float, threshold: float) -> list[str]:
    if confidence >= threshold:
        return []
    return [f"Confidence {confidence:.2f} below threshold {threshold:.2f}"]


def validate_jit_loading(
    metrics: list[dict[str, Any]],
    config: dict[str, Any],
    baseline: dict[str, Any],
    confidence_fn: ConfidenceFn,
) -> dict[str, Any]:
    """H1: average context size per Task call falls by ``target_reduction``."""
    name = config.get("name", "JIT Context Loading")
    target = config.get("target_reduction", 0.3)
    threshold = config.get("confidence_threshold", 0.95)
    criteria = {"target_reduction": target, "confidence_threshold": threshold}

    sizes = [
        d["context_size"]
        for d in event_data(metrics, "jit")
        if isinstance(d.get("context_size"), (int, float))
    ]
    baseline_size = baseline.get("measurements", {}).get("context", {}).get("average_size", 0)
    if not sizes or not baseline_size:
        return _result(name, False, 0, ["No JIT context measurements recorded"], {"sample_size": len(sizes)}, criteria)

    average = sum(sizes) / len(sizes)
    reduction = (baseline_size - average) / baseline_size
    confidence = confidence_fn(len(sizes))

    if reduction >= target:
        evidence = [f"Context size reduced by {reduction:.1%} (target: {target:.0%})"]
    else:
        evidence = [f"Context size reduction of {reduction:.1%} is below target {target:.0%}"]
    evidence.extend(_confidence_evidence(confidence, threshold))

    return _result(
        name,
        reduction >= target and confidence >= threshold,
        confidence,
        evidence,
        {
            "sample_size": len(sizes),
            "average_context_size": round(average, 2),
            "baseline_context_size": baseline_size,
            "context_size_reduction": round(reduction, 4),
        },
        criteria,
    )


def validate_hub_spoke(
    metrics: list[dict[str, Any]],
    config: dict[str, Any],
    confidence_fn: ConfidenceFn,
) -> dict[str, Any]:
    """H2: routed work stays hub-mediated.

    Every routing event counts as a route; a directive event with a
    ``blocked`` decision counts as a peer-to-peer violation.
    """
    name = config.get("name", "Hub-and-Spoke Coordination")
    target = config.get("target_compliance", 0.9)
    threshold = config.get("confidence_threshold", 0.95)
    criteria = {"target_compliance": target, "confidence_threshold": threshold}

    routes = event_data(metrics, "routing")
    violations = sum(1 for d in event_data(metrics, "directive") if d.get("decision") == "blocked")
    total = len(routes) + violations
    if not total:
        return _result(name, False, 0, ["No routing activity recorded"], {"sample_size": 0}, criteria)

    compliant = sum(1 for d in routes if d.get("pattern_compliance", True))
    compliance = _ratio(compliant, total)
    confidence = confidence_fn(total)

    evidence = [f"Routing compliance {compliance:.1%} (target: {target:.0%})"]
    if violations:
        evidence.append(f"{violations} peer-to-peer violations blocked by the directive enforcer")
    else:
        evidence.append("Zero peer-to-peer communication violations detected")
    evidence.extend(_confidence_evidence(confidence, threshold))

    return _result(
        name,
        compliance >= target and confidence >= threshold,
        confidence,
        evidence,
        {
            "sample_size": total,
            "hub_routes": compliant,
            "violations": violations,
            "routing_compliance": round(compliance, 4),
        },
        criteria,
    )


def validate_tdd_handoffs(
    metrics: list[dict[str, Any]],
    config: dict[str, Any],
    confidence_fn: ConfidenceFn,
) -> dict[str, Any]:
    """H3: handoff contracts pass at ``target_success_rate``."""
    name = config.get("name", "Test-Driven Development Handoffs")
    target = config.get("target_success_rate", 0.8)
    threshold = config.get("confidence_threshold", 0.95)
    criteria = {"target_success_rate": target, "confidence_threshold": threshold}

    contracts = event_data(metrics, "contract")
    handoffs = event_data(metrics, "handoff")
    if not contracts:
        return _result(name, False, 0, ["No handoff contracts recorded"], {"sample_size": 0}, criteria)

    passed = sum(1 for d in contracts if d.get("validation_status") == "passed")
    success_rate = _ratio(passed, len(contracts))
    contract_usage = _ratio(sum(1 for d in handoffs if d.get("has_test_validation")), len(handoffs))
    confidence = confidence_fn(len(contracts))

    evidence = [f"Handoff success rate {success_rate:.1%} (target: {target:.0%})"]
    if contract_usage > 0.8:
        evidence.append(f"High contract adoption rate ({contract_usage:.0%} of handoffs carry test validation)")
    evidence.extend(_confidence_evidence(confidence, threshold))

    return _result(
        name,
        success_rate >= target and confidence >= threshold,
        confidence,
        evidence,
        {
            "sample_size": len(contracts),
            "passed_contracts": passed,
            "handoff_success_rate": round(success_rate, 4),
            "contract_usage_rate": round(contract_usage, 4),
        },
        criteria,
    )


def validate_hypotheses(
    metrics: list[dict[str, Any]],
    hypotheses: dict[str, Any],
    baseline: dict[str, Any],
    confidence_fn: ConfidenceFn,
) -> dict[str, dict[str, Any]]:
    return {
        "h1_jit_loading": validate_jit_loading(
            metrics, hypotheses.get("h1_jit_loading", {}), baseline, confidence_fn
        ),
        "h2_hub_spoke": validate_hub_spoke(metrics, hypotheses.get("h2_hub_spoke", {}), confidence_fn),
        "h3_tdd_handoffs": validate_tdd_handoffs(
            metrics, hypotheses.get("h3_tdd_handoffs", {}), confidence_fn
        ),
    }


__all__ = [
    "validate_hypotheses",
    "validate_jit_loading",
    "validate_hub_spoke",
    "validate_tdd_handoffs",
    "event_data",
]
