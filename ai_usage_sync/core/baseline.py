"""
Historical baseline for projecting incomplete dates.

Usage follows a strong weekly rhythm, so the preferred baseline is the
average of the same weekday over complete history. With too few
same-weekday samples it falls back to the simple average of all complete
days.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, Optional, Tuple


class BaselineSource(Enum):
    """Which history the baseline was computed from."""
    SAME_WEEKDAY = "same_weekday"
    SIMPLE_AVERAGE = "simple_average"


@dataclass(frozen=True)
class BaselineResult:
    """Baseline value for one tool on one target date."""
    value: float
    source: BaselineSource
    sample_count: int

    def __post_init__(self):
        """Validate baseline is positive and backed by samples."""
        if self.value <= 0:
            raise ValueError("baseline value must be positive")
        if self.sample_count <= 0:
            raise ValueError("sample_count must be positive")


def compute_baseline(
    history: Iterable[Tuple[date, float]],
    target_date: date,
    min_same_weekday_samples: int = 2,
) -> Optional[BaselineResult]:
    """Compute the baseline for ``target_date`` from complete history.

    Only positive values count: a zero day is either a holiday or missing
    data, and neither says anything about a normal day.

    Args:
        history: (date, value) pairs from complete days only
        target_date: Date being projected; its weekday selects samples
        min_same_weekday_samples: Samples needed to use the weekday average

    Returns:
        BaselineResult, or None when there is no usable history
    """
    samples = [(day, value) for day, value in history if value > 0 and day != target_date]
    if not samples:
        return None

    same_weekday = [value for day, value in samples if day.weekday() == target_date.weekday()]
    if len(same_weekday) >= min_same_weekday_samples:
        return BaselineResult(
            value=sum(same_weekday) / len(same_weekday),
            source=BaselineSource.SAME_WEEKDAY,
            sample_count=len(same_weekday),
        )

    values = [value for _, value in samples]
    return BaselineResult(
        value=sum(values) / len(values),
        source=BaselineSource.SIMPLE_AVERAGE,
        sample_count=len(values),
    )
