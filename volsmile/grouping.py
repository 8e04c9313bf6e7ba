"""
Partition normalized options into per-expiry groups.
"""

from collections import OrderedDict
from typing import Iterable, List, Tuple

from . import config
from .logging import get_logger
from .records import ExpiryGroup, NormalizedOption

logger = get_logger(__name__)


def group_by_expiry(
    options: Iterable[NormalizedOption],
    min_options: int = None,
) -> Tuple[List[ExpiryGroup], List[ExpiryGroup]]:
    """
    Group options by exact expiry timestamp.

    Groups come out in order of first appearance and members keep their
    input order, so iteration is reproducible. The group forward is the
    first member's forward; after spot normalization all members of an
    expiry share it anyway. Puts and calls go into the same group.

    Parameters
    ----------
    options : normalized options
    min_options : minimum members for a group to be fitted
        (default: config.SMILE_MIN_OPTIONS)

    Returns
    -------
    eligible : groups with at least ``min_options`` members
    undersized : groups below the threshold (InsufficientData); these
        are reported and skipped, never fitted
    """
    if min_options is None:
        min_options = config.SMILE_MIN_OPTIONS

    buckets = OrderedDict()
    for opt in options:
        buckets.setdefault(opt.expiry, []).append(opt)

    eligible, undersized = [], []
    for expiry, members in buckets.items():
        group = ExpiryGroup(
            expiry=expiry,
            years_to_expiry=members[0].years_to_expiry,
            forward=members[0].forward,
            options=tuple(members),
        )
        if len(group) < min_options:
            logger.info("expiry %s has %d options (< %d), not fitting",
                        expiry.isoformat(), len(group), min_options)
            undersized.append(group)
        else:
            eligible.append(group)

    return eligible, undersized
