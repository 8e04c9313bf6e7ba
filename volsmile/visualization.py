"""
Visualization of fitted smiles, read back from the result store.

Two backends:
    - matplotlib: one static PNG per expiry
    - plotly: a single interactive HTML page with every expiry

Results hold total variance against log-moneyness; the charts convert
to implied vol against strike here (sigma = sqrt(w / T), K = F * e^k).
The fitted curve is drawn across the whole range the arbitrage check
covered, and the parts beyond the observed strikes are marked as
extrapolation.
"""

from pathlib import Path
from typing import List, Sequence, Tuple, Union

import numpy as np

import matplotlib
matplotlib.use("Agg")  # non-interactive backend for server/CI environments
import matplotlib.pyplot as plt

import plotly.graph_objects as go

from . import config
from .records import FitResult
from .svi_model import svi_implied_vol


def smile_curve(result: FitResult, points: int = None) -> Tuple[np.ndarray, np.ndarray]:
    """
    Fitted smile as (strikes, implied vols) over the checked k-range.

    Parameters
    ----------
    result : a fitted smile
    points : curve resolution (default: config.SMILE_CURVE_POINTS)
    """
    if points is None:
        points = config.SMILE_CURVE_POINTS
    k = np.linspace(result.check_range[0], result.check_range[1], points)
    return result.forward * np.exp(k), svi_implied_vol(k, result.years_to_expiry, result.params)


def market_points(result: FitResult) -> Tuple[np.ndarray, np.ndarray]:
    """Observed (strikes, implied vols) the smile was fitted to."""
    strikes = np.asarray(result.strikes, dtype=float)
    iv = np.sqrt(np.asarray(result.observed_variance, dtype=float) / result.years_to_expiry)
    return strikes, iv


def _graph_path(result: FitResult, output_dir: Path) -> Path:
    # several expiries can fall on one date at different hours
    return output_dir / f"smile-{result.expiry:%Y-%m-%dT%H%M}.png"


# ════════════════════════════════════════════════════════════════════════
#  MATPLOTLIB: ONE SMILE PER EXPIRY (static PNG)
# ════════════════════════════════════════════════════════════════════════

def plot_smile_matplotlib(
    result: FitResult,
    output_path: Union[str, Path] = None,
) -> Path:
    """
    Render one expiry's market vols and fitted SVI smile as a PNG.

    Parameters
    ----------
    result : fitted smile
    output_path : where to save (default: config.GRAPHS_DIR / "smile-<expiry>T<HHMM>.png")

    Returns
    -------
    Path of the written file
    """
    if output_path is None:
        output_path = _graph_path(result, config.GRAPHS_DIR)
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    curve_K, curve_iv = smile_curve(result)
    market_K, market_iv = market_points(result)
    K_lo, K_hi = result.lowest_observed_strike, result.highest_observed_strike

    fig, ax = plt.subplots(figsize=(config.FIG_WIDTH_2D, config.FIG_HEIGHT_2D))
    fig.patch.set_facecolor(config.DARK_BG)
    ax.set_facecolor(config.DARK_BG)

    # extrapolation zones: beyond the strikes that were actually quoted
    ax.axvspan(curve_K[0], K_lo, color=config.EXTRAPOLATION_COLOR, alpha=0.08)
    ax.axvspan(K_hi, curve_K[-1], color=config.EXTRAPOLATION_COLOR, alpha=0.08,
               label="Extrapolation")

    ax.plot(curve_K, curve_iv * 100, color=config.FIT_COLOR, linewidth=2.2, label="SVI fit")
    ax.scatter(market_K, market_iv * 100, color=config.MARKET_COLOR, s=28, zorder=3,
               label="Market")

    ax.axvline(result.forward, color="white", alpha=0.35, linestyle="--", linewidth=1)
    ylim = ax.get_ylim()
    ax.text(result.forward, ylim[1] * 0.97, f" F ≈ {result.forward:,.0f}",
            color="white", alpha=0.6, fontsize=10)

    ax.set_xlabel("Strike (K)", fontsize=13, color="white")
    ax.set_ylabel("Implied Volatility (σ) %", fontsize=13, color="white")
    ax.set_title(
        f"Volatility smile, expiry {result.expiry:%Y-%m-%d} (T={result.years_to_expiry:.3f}y)",
        fontsize=17, fontweight="bold", color=config.TITLE_COLOR,
    )
    ax.tick_params(colors="white", labelsize=10)
    ax.grid(True, alpha=config.GRID_COLOR_ALPHA, color="white")

    ax.legend(loc="upper right", fontsize=10, facecolor="#191930",
              edgecolor="#ffffff30", labelcolor="white")

    for spine in ax.spines.values():
        spine.set_color("#333355")

    plt.tight_layout()
    plt.savefig(output_path, dpi=config.DPI, bbox_inches="tight",
                facecolor=config.DARK_BG, edgecolor="none")
    plt.close(fig)
    return output_path


# ════════════════════════════════════════════════════════════════════════
#  PLOTLY: ALL SMILES (interactive HTML)
# ════════════════════════════════════════════════════════════════════════

def plot_smiles_plotly(
    results: Sequence[FitResult],
    output_path: Union[str, Path] = None,
) -> Path:
    """Render every fitted smile, with its market points, as one HTML page."""
    if output_path is None:
        output_path = config.OUTPUT_DIR / "smiles.html"
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    fig = go.Figure()
    for i, result in enumerate(sorted(results, key=lambda r: r.expiry)):
        color = config.SMILE_COLORS[i % len(config.SMILE_COLORS)]
        label = f"{result.expiry:%Y-%m-%d}"
        curve_K, curve_iv = smile_curve(result)
        market_K, market_iv = market_points(result)

        fig.add_trace(go.Scatter(
            x=curve_K, y=curve_iv, mode="lines", name=label, legendgroup=label,
            line=dict(color=color, width=2.5),
            hovertemplate="K=%{x:,.0f}  IV=%{y:.1%}<extra></extra>",
        ))
        fig.add_trace(go.Scatter(
            x=market_K, y=market_iv, mode="markers", name=f"{label} market",
            legendgroup=label, showlegend=False,
            marker=dict(color=color, size=7, line=dict(color="white", width=0.5)),
            hovertemplate="K=%{x:,.0f}  market IV=%{y:.1%}<extra></extra>",
        ))

    fig.update_layout(
        title=dict(
            text="<b>Fitted SVI Smiles by Expiry</b>",
            font=dict(size=20, color=config.TITLE_COLOR), x=0.5,
        ),
        xaxis=dict(
            title=dict(text="Strike (K)", font=dict(size=14, color="#ddd")),
            tickfont=dict(size=11, color=config.AXIS_TEXT_COLOR),
            gridcolor="rgba(200,200,200,0.1)",
        ),
        yaxis=dict(
            title=dict(text="Implied Volatility (σ)", font=dict(size=14, color="#ddd")),
            tickformat=".0%",
            tickfont=dict(size=11, color=config.AXIS_TEXT_COLOR),
            gridcolor="rgba(200,200,200,0.1)",
        ),
        plot_bgcolor=config.DARK_BG,
        paper_bgcolor=config.DARK_BG,
        font=dict(color="white"),
        legend=dict(
            bgcolor="rgba(25,25,45,0.85)",
            bordercolor="rgba(255,255,255,0.15)", borderwidth=1,
            font=dict(size=12),
            title=dict(text="Expiry", font=dict(size=12, color="#ccc")),
        ),
        width=1000, height=550,
        margin=dict(l=60, r=30, t=60, b=50),
    )

    fig.write_html(str(output_path))
    return output_path


def render_all(
    results: Sequence[FitResult],
    html: bool = True,
    output_dir: Union[str, Path] = None,
) -> List[Path]:
    """
    Write one PNG per expiry plus, optionally, the combined HTML page.

    Returns
    -------
    list of written paths
    """
    output_dir = Path(output_dir) if output_dir is not None else config.GRAPHS_DIR
    paths = [plot_smile_matplotlib(r, _graph_path(r, output_dir)) for r in results]
    if html and results:
        paths.append(plot_smiles_plotly(results, output_dir / "smiles.html"))
    return paths
