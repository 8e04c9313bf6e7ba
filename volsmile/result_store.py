"""
Persistence of fitted smiles for the rendering stage.

Results are written as pretty-printed JSON under a single container key:

    {"fit_results": [ {...}, {...} ]}

Floats go through Python's shortest round-trip repr and datetimes
through ISO-8601, so a reloaded FitResult compares equal to the one that
was saved, parameters included bit for bit. The only timestamp stored is
the run's as-of instant; nothing computed from a clock at fit time is
persisted.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Union

import pandas as pd

from . import config
from .logging import get_logger
from .records import FitResult, SviParameters

logger = get_logger(__name__)

CONTAINER_KEY = "fit_results"


def result_to_dict(result: FitResult) -> Dict:
    return {
        "expiry": result.expiry.isoformat(),
        "as_of": result.as_of.isoformat(),
        "years_to_expiry": result.years_to_expiry,
        "forward": result.forward,
        "params": result.params.to_dict(),
        "strikes": list(result.strikes),
        "log_moneyness": list(result.log_moneyness),
        "observed_variance": list(result.observed_variance),
        "residuals": list(result.residuals),
        "arbitrage_free": result.arbitrage_free,
        "cost": result.cost,
        "check_range": list(result.check_range),
    }


def result_from_dict(data: Dict) -> FitResult:
    return FitResult(
        expiry=datetime.fromisoformat(data["expiry"]),
        as_of=datetime.fromisoformat(data["as_of"]),
        years_to_expiry=float(data["years_to_expiry"]),
        forward=float(data["forward"]),
        params=SviParameters.from_dict(data["params"]),
        strikes=tuple(float(v) for v in data["strikes"]),
        log_moneyness=tuple(float(v) for v in data["log_moneyness"]),
        observed_variance=tuple(float(v) for v in data["observed_variance"]),
        residuals=tuple(float(v) for v in data["residuals"]),
        arbitrage_free=bool(data["arbitrage_free"]),
        cost=float(data["cost"]),
        check_range=tuple(float(v) for v in data["check_range"]),
    )


class FitResultStore:
    """
    JSON file holding one FitResult per expiry.

    Parameters
    ----------
    path : file location (default: config.FIT_RESULTS_FILE)
    """

    def __init__(self, path: Union[str, Path] = None):
        self.path = Path(path) if path is not None else config.FIT_RESULTS_FILE

    def save(self, result: FitResult) -> Path:
        """Store ``result``, replacing any stored result for the same expiry."""
        results = [r for r in self.load_all() if r.expiry != result.expiry]
        results.append(result)
        return self.save_all(results)

    def save_all(self, results: Iterable[FitResult]) -> Path:
        """
        Overwrite the file with ``results``.

        The payload goes to a ``.tmp`` sibling first and is moved over the
        target in one rename, so a failed save leaves the previous file
        untouched.
        """
        payload = {CONTAINER_KEY: [result_to_dict(r) for r in results]}
        text = json.dumps(payload, indent=2)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(text, encoding="utf-8")
        tmp.replace(self.path)
        logger.debug("wrote %d fit results to %s", len(payload[CONTAINER_KEY]), self.path)
        return self.path

    def load_all(self) -> List[FitResult]:
        """All stored results, in file order; empty if nothing was saved yet."""
        if not self.path.exists():
            return []
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        return [result_from_dict(item) for item in payload.get(CONTAINER_KEY, [])]

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()


def results_to_frame(results: Iterable[FitResult]) -> pd.DataFrame:
    """
    Summarize fitted smiles as a table, one row per expiry.

    Returns
    -------
    DataFrame with columns [expiry, T, forward, a, b, rho, m, sigma,
    n_options, rmse, max_abs_residual, strike_min, strike_max,
    arbitrage_free], sorted by expiry
    """
    rows = []
    for r in results:
        row = {"expiry": r.expiry, "T": r.years_to_expiry, "forward": r.forward}
        row.update(r.params.to_dict())
        row.update({
            "n_options": len(r.strikes),
            "rmse": r.rmse,
            "max_abs_residual": r.max_abs_residual,
            "strike_min": r.lowest_observed_strike,
            "strike_max": r.highest_observed_strike,
            "arbitrage_free": r.arbitrage_free,
        })
        rows.append(row)

    columns = ["expiry", "T", "forward", "a", "b", "rho", "m", "sigma", "n_options",
               "rmse", "max_abs_residual", "strike_min", "strike_max", "arbitrage_free"]
    df = pd.DataFrame(rows, columns=columns)
    if not df.empty:
        df = df.sort_values("expiry").reset_index(drop=True)
    return df
