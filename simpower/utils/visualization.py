"""
Visualization utilities for SimPower.

This module provides the power-curve plot for sample-size results.
"""

from typing import Dict, List, Optional

__all__ = []


def _create_power_plot(
    sample_sizes: List[int],
    powers: Dict[int, float],
    interpolated: Optional[Dict[int, float]],
    required: Dict[float, Optional[int]],
    title: str,
    show: bool = True,
):
    """Plot empirical power against sample size with target markers.

    Draws the empirical points, the interpolated line, a dashed line per
    target power, and annotates the required sample size for each target.

    Args:
        sample_sizes: Simulated sizes (x-axis).
        powers: Size → empirical power (fraction).
        interpolated: Size → interpolated power, or ``None``.
        required: Target power → required size (``None`` if not reached).
        title: Plot title.
        show: Call ``plt.show()``; otherwise return the figure.

    Raises:
        ImportError: If ``matplotlib`` is not installed.
    """
    try:
        import matplotlib.pyplot as plt
    except ImportError:
        raise ImportError("matplotlib required for plotting: pip install matplotlib") from None

    fig, ax = plt.subplots(figsize=(10, 6))

    ax.plot(
        sample_sizes,
        [100 * powers.get(n, float("nan")) for n in sample_sizes],
        "o",
        color="black",
        label="Simulated power",
        markersize=5,
    )
    if interpolated:
        xs = sorted(interpolated)
        ax.plot(xs, [100 * interpolated[n] for n in xs], "-", color="steelblue", linewidth=2, label="Interpolated")

    colors = plt.get_cmap("Set1")
    for i, (target, n) in enumerate(sorted(required.items())):
        color = colors(i)
        ax.axhline(y=100 * target, color=color, linestyle="--", linewidth=1.5, label=f"Target {100 * target:.0f}%")
        if n is not None:
            ax.axvline(x=n, color=color, linestyle=":", linewidth=1)
            ax.annotate(
                f"N={n}",
                xy=(n, 100 * target),
                xytext=(10, -20),
                textcoords="offset points",
                bbox={"boxstyle": "round,pad=0.3", "facecolor": color, "alpha": 0.3},
                arrowprops={"arrowstyle": "->", "color": color},
            )

    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.set_xlabel("Sample size per cell", fontsize=12)
    ax.set_ylabel("Power (%)", fontsize=12)
    ax.grid(True, alpha=0.3)
    ax.legend(loc="lower right")
    ax.set_ylim(0, 105)
    plt.tight_layout()

    if show:
        plt.show()
    return fig
