"""
Plain-text report formatting for SimPower results.
"""

import math
from typing import Any, Dict, List

__all__ = []

_RULE = "-" * 60


def _format_power(power: float) -> str:
    return "   n/a" if power is None or math.isnan(power) else f"{100 * power:5.1f}%"


def _format_reasons(reasons: Dict[str, int], limit: int = 3) -> List[str]:
    lines = []
    for reason, count in list(reasons.items())[:limit]:
        lines.append(f"  {count:>5} × {reason}")
    if len(reasons) > limit:
        lines.append(f"  ... and {len(reasons) - limit} other reasons")
    return lines


def _format_header(model: Dict[str, Any]) -> List[str]:
    return [
        f"Formula: {model['formula']}",
        f"Tested term: {model['term']}",
        f"Alpha: {model['alpha']}   Replications per size: {model['n_replications']}",
    ]


def _format_power_result(result: Dict[str, Any], summary: str) -> str:
    model, res = result["model"], result["results"]
    lines = _format_header(model)
    lines.append(_RULE)
    lines.append(
        f"Power at N={model['sample_size']} per cell: {_format_power(res['power']).strip()} "
        f"({res['n_used']} fits used, {res['n_failed']} failed)"
    )
    if res["low_confidence"]:
        lines.append("Warning: low-confidence estimate (too few successful fits)")
    if res["failure_reasons"] and summary == "long":
        lines.append("Failure reasons:")
        lines.extend(_format_reasons(res["failure_reasons"]))
    return "\n".join(lines)


def _format_sample_size_result(result: Dict[str, Any], summary: str) -> str:
    model, res = result["model"], result["results"]
    low = set(res["low_confidence"])
    lines = _format_header(model)
    lines.append(_RULE)
    lines.append(f"{'N/cell':>8} {'Power':>8} {'Used':>6} {'Failed':>7}")
    for n in res["sample_sizes_tested"]:
        flag = "  *" if n in low else ""
        lines.append(f"{n:>8} {_format_power(res['powers'].get(n, math.nan)):>8} {res['n_used'].get(n, 0):>6} {res['n_failed'].get(n, 0):>7}{flag}")
    if low:
        lines.append("* low-confidence estimate (too few successful fits)")
    lines.append(_RULE)

    lines.append("Required sample size per cell (linear interpolation):")
    size_range = model["sample_size_range"]
    for threshold, n in res["required_sample_sizes"].items():
        if n is None:
            answer = f"not reached within [{size_range['from_size']}, {size_range['to_size']}]"
        else:
            answer = f"N={n}"
        lines.append(f"  {100 * threshold:.0f}% power: {answer}")

    if res["failure_reasons"] and summary == "long":
        lines.append("Failure reasons:")
        lines.extend(_format_reasons(res["failure_reasons"]))
    return "\n".join(lines)


def _format_results(analysis_type: str, result: Dict[str, Any], summary: str = "short") -> str:
    """Format a result dictionary as a plain-text report.

    Args:
        analysis_type: ``"power"`` or ``"sample_size"``.
        result: Dictionary from ``build_power_result`` or
            ``build_sample_size_result``.
        summary: ``"short"`` or ``"long"`` (adds failure reasons).
    """
    if analysis_type == "power":
        return _format_power_result(result, summary)
    if analysis_type == "sample_size":
        return _format_sample_size_result(result, summary)
    raise ValueError(f"Unknown analysis type: {analysis_type}")
