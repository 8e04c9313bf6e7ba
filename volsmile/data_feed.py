"""
Raw quote sources.

Two offline modes:
    1. File: read a quote dump (CSV or JSON) produced by a market data
       fetcher. Columns match the RawQuote fields.
    2. Synthetic: price out-of-the-money quotes off known SVI smiles
       (offline, reproducible, and the ground truth is known)

Network retrieval lives outside this package; whatever fetches quotes
just has to write the file layout read here, or hand RawQuote records
straight to the pipeline.
"""

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from . import config
from .black_scholes import black_price
from .records import CALL, PUT, RawQuote, SviParameters
from .svi_model import svi_implied_vol

QUOTE_COLUMNS = [
    "instrument_id", "strike", "expiry", "option_type", "mark_price",
    "spot_price", "forward_price", "observed_at", "premium_in_underlying",
]


# ════════════════════════════════════════════════════════════════════════
#  FILE DATA
# ════════════════════════════════════════════════════════════════════════

def _read_frame(path: Path) -> pd.DataFrame:
    if path.suffix.lower() == ".json":
        return pd.DataFrame(json.loads(path.read_text(encoding="utf-8")))
    return pd.read_csv(path, float_precision="round_trip")


def quotes_from_frame(df: pd.DataFrame) -> List[RawQuote]:
    """
    Build RawQuote records from a DataFrame with the QUOTE_COLUMNS layout.

    ``forward_price`` may be blank/NaN and ``premium_in_underlying`` may be
    missing altogether (treated as False). Timestamps are parsed as UTC.

    Raises
    ------
    ValueError : if a required column is missing
    """
    required = [c for c in QUOTE_COLUMNS if c not in ("forward_price", "premium_in_underlying")]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Quote data is missing columns: {missing}")

    df = df.copy()
    df["expiry"] = pd.to_datetime(df["expiry"], utc=True)
    df["observed_at"] = pd.to_datetime(df["observed_at"], utc=True)
    if "forward_price" not in df.columns:
        df["forward_price"] = np.nan
    if "premium_in_underlying" not in df.columns:
        df["premium_in_underlying"] = False

    quotes = []
    for row in df.itertuples(index=False):
        forward = row.forward_price
        quotes.append(RawQuote(
            instrument_id=str(row.instrument_id),
            strike=float(row.strike),
            expiry=row.expiry.to_pydatetime(),
            option_type=str(row.option_type),
            mark_price=float(row.mark_price),
            spot_price=float(row.spot_price),
            forward_price=None if pd.isna(forward) else float(forward),
            observed_at=row.observed_at.to_pydatetime(),
            premium_in_underlying=bool(row.premium_in_underlying),
        ))
    return quotes


def quotes_to_frame(quotes: Sequence[RawQuote]) -> pd.DataFrame:
    """Inverse of quotes_from_frame."""
    rows = [{col: getattr(q, col) for col in QUOTE_COLUMNS} for q in quotes]
    return pd.DataFrame(rows, columns=QUOTE_COLUMNS)


def load_quotes(path: Union[str, Path] = None) -> List[RawQuote]:
    """
    Load raw quotes from a CSV or JSON file.

    Parameters
    ----------
    path : file to read (default: config.RAW_QUOTES_FILE)

    Raises
    ------
    FileNotFoundError : if the file does not exist
    """
    path = Path(path) if path is not None else config.RAW_QUOTES_FILE
    if not path.exists():
        raise FileNotFoundError(f"No quote data at {path}. Fetch market data first.")
    return quotes_from_frame(_read_frame(path))


def save_quotes(quotes: Sequence[RawQuote], path: Union[str, Path] = None) -> Path:
    """
    Write raw quotes as CSV (or JSON when the suffix is .json).

    Both layouts reload to records equal to ``quotes``: floats are written
    with their shortest round-trip repr, timestamps as ISO-8601.
    """
    path = Path(path) if path is not None else config.RAW_QUOTES_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() == ".json":
        rows = []
        for q in quotes:
            row = {col: getattr(q, col) for col in QUOTE_COLUMNS}
            row["expiry"] = q.expiry.isoformat()
            row["observed_at"] = q.observed_at.isoformat()
            rows.append(row)
        path.write_text(json.dumps(rows, indent=2), encoding="utf-8")
        return path

    df = quotes_to_frame(quotes)
    df["expiry"] = df["expiry"].map(lambda t: t.isoformat())
    df["observed_at"] = df["observed_at"].map(lambda t: t.isoformat())
    df.to_csv(path, index=False)
    return path


# ════════════════════════════════════════════════════════════════════════
#  SYNTHETIC DATA (SVI)
# ════════════════════════════════════════════════════════════════════════

def default_svi_parameters(T: float) -> SviParameters:
    """
    Reference smile for maturity T, used by the synthetic generator.

    The level grows linearly with T; the shape parameters are fixed,
    which keeps every default slice free of butterfly arbitrage.
    """
    return SviParameters(
        a=config.SYNTH_SVI_A * T,
        b=config.SYNTH_SVI_B * np.sqrt(T),
        rho=config.SYNTH_SVI_RHO,
        m=config.SYNTH_SVI_M,
        sigma=config.SYNTH_SVI_SIGMA,
    )


def generate_synthetic_quotes(
    as_of: datetime,
    forward: float = None,
    maturities: Optional[Sequence[float]] = None,
    strikes: Optional[Sequence[float]] = None,
    params_by_maturity: Optional[Dict[float, SviParameters]] = None,
    r: float = None,
    noise_std: float = None,
    seed: Optional[int] = None,
) -> List[RawQuote]:
    """
    Generate out-of-the-money quotes whose implied vols follow SVI exactly.

    Puts are quoted below the forward, calls at and above it, as on a
    real venue. Spot is set to F * e^{-rT} so the supplied forward is
    consistent with the rate.

    Parameters
    ----------
    as_of : as-of instant; expiries are placed at as_of + T years
    forward : forward price for every maturity (default: config.SYNTH_FORWARD)
    maturities : year fractions (default: config.SYNTH_MATURITIES)
    strikes : absolute strikes (default: config.SYNTH_N_STRIKES strikes
        spanning exp(+-config.SYNTH_STRIKE_BOUND) around the forward)
    params_by_maturity : SVI parameters per maturity
        (default: default_svi_parameters(T))
    r : risk-free rate (default: config.RISK_FREE_RATE)
    noise_std : std of Gaussian noise added to each vol
        (default: config.SYNTH_NOISE_STD)
    seed : random seed for the noise (default: config.SEED)

    Returns
    -------
    list of RawQuote
    """
    if forward is None:
        forward = config.SYNTH_FORWARD
    if maturities is None:
        maturities = config.SYNTH_MATURITIES
    if strikes is None:
        bound = config.SYNTH_STRIKE_BOUND
        strikes = forward * np.exp(np.linspace(-bound, bound, config.SYNTH_N_STRIKES))
    if params_by_maturity is None:
        params_by_maturity = {T: default_svi_parameters(T) for T in maturities}
    if r is None:
        r = config.RISK_FREE_RATE
    if noise_std is None:
        noise_std = config.SYNTH_NOISE_STD

    rng = np.random.default_rng(config.SEED if seed is None else seed)

    quotes = []
    for T in maturities:
        params = params_by_maturity[T]
        expiry = as_of + timedelta(seconds=T * config.DAYS_PER_YEAR * 24 * 3600)
        spot = forward * np.exp(-r * T)

        for K in strikes:
            k = np.log(K / forward)
            iv = float(svi_implied_vol(np.array([k]), T, params)[0])
            if noise_std > 0:
                iv = max(iv + rng.normal(0.0, noise_std), 1e-4)

            option_type = PUT if K < forward else CALL
            price = black_price(forward, K, T, r, iv, option_type)
            quotes.append(RawQuote(
                instrument_id=f"SYN-{expiry:%Y%m%d}-{K:.0f}-{option_type[0].upper()}",
                strike=float(K),
                expiry=expiry,
                option_type=option_type,
                mark_price=float(price),
                spot_price=float(spot),
                forward_price=float(forward),
                observed_at=as_of,
            ))

    return quotes


# ════════════════════════════════════════════════════════════════════════
#  UNIFIED INTERFACE
# ════════════════════════════════════════════════════════════════════════

def get_quotes(
    source: str = "file",
    as_of: Optional[datetime] = None,
    path: Union[str, Path] = None,
) -> List[RawQuote]:
    """
    Main entry point for getting raw quotes.

    Parameters
    ----------
    source : "file" or "synthetic"
    as_of : as-of instant (required for synthetic quotes)
    path : quote file (file mode only)

    Returns
    -------
    list of RawQuote
    """
    if source == "file":
        return load_quotes(path)
    elif source == "synthetic":
        if as_of is None:
            raise ValueError("Synthetic quotes need an as_of instant.")
        return generate_synthetic_quotes(as_of)
    else:
        raise ValueError(f"Unknown source: {source}. Use 'file' or 'synthetic'.")
