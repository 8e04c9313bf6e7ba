"""
Global configuration for the smile fitting pipeline.

Keeps all magic numbers in one place. Override via CLI args in main.py,
via function keyword arguments, or by editing this file directly for
persistent changes.
"""

import os
from pathlib import Path


# ── paths ────────────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.environ.get("VOLSMILE_DATA_DIR", PROJECT_ROOT / "data"))
OUTPUT_DIR = PROJECT_ROOT / "output"
GRAPHS_DIR = OUTPUT_DIR / "graphs"

RAW_QUOTES_FILE = DATA_DIR / "market-quotes.csv"
FIT_RESULTS_FILE = DATA_DIR / "smile-fit-results.json"


# ── market parameters ────────────────────────────────────────────────────
RISK_FREE_RATE = 0.06           # annualized, continuous; futures basis usually implies 5-8%
DAYS_PER_YEAR = 365.0           # ACT/365 year fractions
MIN_TIME_TO_EXPIRY = 0.0        # in years; anything at or below is treated as expired


# ── grouping ─────────────────────────────────────────────────────────────
SMILE_MIN_OPTIONS = 5           # fewer members than this -> InsufficientData


# ── implied vol solver ───────────────────────────────────────────────────
IV_VOL_LOWER = 1e-6             # lower bracket (0.0001%)
IV_VOL_UPPER = 5.0              # initial upper bracket (500%)
IV_MAX_BRACKET_EXPANSIONS = 10  # upper bracket doubles at most this many times
IV_PRICE_TOL = 1e-8             # absolute price tolerance
IV_VOL_TOL = 1e-12              # stop once the bracket is this narrow
IV_MAX_ITER = 200
IV_VEGA_FLOOR = 1e-12           # below this the Newton step is replaced by bisection


# ── SVI search ───────────────────────────────────────────────────────────
SVI_GRID_POINTS = 7             # per dimension in layer 0 (b, rho, m, sigma)
SVI_REFINE_POINTS = 5           # per dimension in the refining layers
SVI_GRID_LAYERS = 3             # layer 0 + two refinements
SVI_STARTING_REGIONS = 3        # independent runs over slices of the m range
SVI_RHO_BOUND = 0.999
SVI_SIGMA_MIN = 1e-4
SVI_MAX_WING_SLOPE = 2.0        # Lee's moment bound on b * (1 + |rho|)


# ── Levenberg-Marquardt ──────────────────────────────────────────────────
LM_MAX_ITER = 500
LM_INITIAL_DAMPING = 1e-3
LM_DAMPING_UP = 10.0
LM_DAMPING_DOWN = 10.0
LM_MAX_DAMPING = 1e12
LM_FTOL = 1e-12                 # relative cost improvement that counts as converged
LM_COST_FLOOR = 1e-28           # cost this small is an exact fit


# ── arbitrage check ──────────────────────────────────────────────────────
ARBITRAGE_CHECK_POINTS = 101    # sampling resolution of g(k)
ARBITRAGE_K_PADDING = 0.5       # minimum log-moneyness beyond the observed strikes


# ── synthetic quotes ─────────────────────────────────────────────────────
# BTC-like defaults: forward near 50k, quarterly-ish expiries
SYNTH_FORWARD = 50000.0
SYNTH_MATURITIES = [0.05, 0.10, 0.25, 0.50, 1.0]
SYNTH_STRIKE_BOUND = 0.45       # strikes span exp(+-0.45) around the forward
SYNTH_N_STRIKES = 15
SYNTH_SVI_A = 0.01              # per year of maturity
SYNTH_SVI_B = 0.12
SYNTH_SVI_RHO = -0.25
SYNTH_SVI_M = 0.02
SYNTH_SVI_SIGMA = 0.25
SYNTH_NOISE_STD = 0.0           # vol noise; 0 gives exact SVI prices


# ── visualization ────────────────────────────────────────────────────────
DARK_BG = "#0c0c16"
GRID_COLOR_ALPHA = 0.12
AXIS_TEXT_COLOR = "rgba(200,200,200,0.8)"
TITLE_COLOR = "white"
DPI = 200                       # matplotlib export resolution
FIG_WIDTH_2D = 12
FIG_HEIGHT_2D = 6
SMILE_CURVE_POINTS = 200
MARKET_COLOR = "#ffd93d"
FIT_COLOR = "#4d96ff"
EXTRAPOLATION_COLOR = "#ff6b6b"
SMILE_COLORS = ["#ff6b6b", "#ffd93d", "#6bcb77", "#4d96ff", "#b388ff"]


# ── random seed ──────────────────────────────────────────────────────────
SEED = 42  # reproducibility for synthetic generation
