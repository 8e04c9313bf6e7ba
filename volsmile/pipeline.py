"""
End-to-end smile construction: quotes -> normalized options -> expiry
groups -> fitted SVI smiles -> result store.

Each stage hands its output to the next by value. A failure inside one
expiry group (too few options, nothing arbitrage-free) is recorded in the
report and never stops the other groups.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from . import config
from .grouping import group_by_expiry
from .logging import get_logger
from .normalizer import NormalizationReport, normalize_quotes
from .records import FitResult, RawQuote
from .result_store import FitResultStore
from .svi_calibration import calibrate_svi_surface

logger = get_logger(__name__)


@dataclass
class SurfaceBuildReport:
    """Everything a caller needs to know about one pipeline run."""

    as_of: datetime
    results: List[FitResult] = field(default_factory=list)
    normalization: NormalizationReport = field(default_factory=NormalizationReport)
    insufficient: Dict[datetime, int] = field(default_factory=dict)
    unfittable: Dict[datetime, str] = field(default_factory=dict)

    @property
    def n_fitted(self) -> int:
        return len(self.results)

    @property
    def n_skipped_groups(self) -> int:
        return len(self.insufficient) + len(self.unfittable)


def build_surface(
    quotes: Iterable[RawQuote],
    as_of: datetime,
    store: Optional[FitResultStore] = None,
    rate: float = None,
    reference_spot: Optional[float] = None,
    min_options: int = None,
    **fit_kwargs,
) -> SurfaceBuildReport:
    """
    Run the full pipeline on a batch of quotes.

    Parameters
    ----------
    quotes : raw quotes, fully fetched before this call
    as_of : the run's as-of instant, captured once by the caller
    store : if given, the fitted results overwrite its contents
    rate : risk-free rate (default: config.RISK_FREE_RATE)
    reference_spot : optional common spot for normalization
    min_options : group size threshold (default: config.SMILE_MIN_OPTIONS)
    **fit_kwargs : forwarded to svi_calibration.fit_group

    Returns
    -------
    SurfaceBuildReport
    """
    if min_options is None:
        min_options = config.SMILE_MIN_OPTIONS

    options, norm_report = normalize_quotes(quotes, as_of, rate=rate,
                                            reference_spot=reference_spot)
    eligible, undersized = group_by_expiry(options, min_options=min_options)
    logger.info("%d expiry groups eligible, %d undersized", len(eligible), len(undersized))

    results, failures = calibrate_svi_surface(eligible, as_of, min_options=min_options,
                                              **fit_kwargs)

    report = SurfaceBuildReport(
        as_of=as_of,
        results=results,
        normalization=norm_report,
        insufficient={g.expiry: len(g) for g in undersized},
        unfittable=failures,
    )

    if store is not None:
        store.save_all(results)
        logger.info("saved %d fitted smiles to %s", len(results), store.path)

    return report
