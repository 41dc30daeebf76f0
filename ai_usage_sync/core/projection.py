"""
Read-time projection of incomplete usage data.

Providers report with a lag (about a day for Anthropic and OpenAI, an hour
or two for Cursor), so the most recent dates in a daily series are
misleadingly low. This module annotates each date and tool:

- complete dates pass through unchanged
- incomplete past dates show the historical baseline
- today blends the partial value extrapolated over working hours with the
  baseline, weighting toward the extrapolation as the day progresses

The true stored value is always kept next to the displayed one.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from ai_usage_sync.config.loader import ProjectionConfig
from ai_usage_sync.storage.repository import UsageRepository

from .baseline import compute_baseline


class ValueStatus(Enum):
    """How a displayed value relates to the stored one."""
    CONFIRMED = "confirmed"        # complete data, shown as stored
    INCOMPLETE = "incomplete"      # incomplete, shown as stored
    ESTIMATED = "estimated"        # replaced by the historical baseline
    EXTRAPOLATED = "extrapolated"  # partial day scaled up and blended


@dataclass(frozen=True)
class DailyUsagePoint:
    """Stored per-tool token totals for one date."""
    date: date
    tools: Mapping[str, int] = field(default_factory=dict)
    cost: float = 0.0


@dataclass(frozen=True)
class ToolCompleteness:
    """Newest date a tool has data for; None when it has none."""
    last_data_date: Optional[date] = None


@dataclass(frozen=True)
class ToolValue:
    displayed: int
    actual: int
    projected_from: Optional[int] = None
    status: ValueStatus = ValueStatus.CONFIRMED

    @property
    def is_projected(self) -> bool:
        return self.projected_from is not None


@dataclass(frozen=True)
class ProjectedPoint:
    date: date
    tools: Dict[str, ToolValue]
    cost: float
    is_incomplete: bool = False

    @property
    def displayed_total(self) -> int:
        return sum(value.displayed for value in self.tools.values())

    @property
    def actual_total(self) -> int:
        return sum(value.actual for value in self.tools.values())


def completion_factor(local_hour: float, work_start: float = 7.0, work_end: float = 19.0) -> float:
    """Share of the working day elapsed at ``local_hour``, clamped to [0, 1]."""
    if local_hour <= work_start:
        return 0.0
    if local_hour >= work_end:
        return 1.0
    return (local_hour - work_start) / (work_end - work_start)


def local_clock(now: Optional[datetime] = None) -> Tuple[date, float]:
    """Local date and fractional hour taken from a single clock reading.

    Both values passed to project() should come from here so "today" and
    the hour of that day never straddle midnight.
    """
    now = now.astimezone() if now is not None else datetime.now().astimezone()
    return now.date(), now.hour + now.minute / 60 + now.second / 3600


def project(
    series: Iterable[DailyUsagePoint],
    completeness: Mapping[str, ToolCompleteness],
    as_of_date: date,
    local_hour: Optional[float] = None,
    config: Optional[ProjectionConfig] = None,
) -> List[ProjectedPoint]:
    """Annotate a daily series with completeness and projected values.

    Args:
        series: Stored daily points, one per date
        completeness: Last data date per tool
        as_of_date: The local date treated as "today"
        local_hour: Fractional local wall-clock hour (current hour when None)
        config: Working hours, blend cap and baseline sample settings

    Returns:
        One ProjectedPoint per input point, in input order
    """
    config = config or ProjectionConfig()
    points = list(series)
    hour = local_clock()[1] if local_hour is None else local_hour
    factor = completion_factor(hour, config.work_start_hour, config.work_end_hour)

    tools = sorted(set(completeness) | {tool for point in points for tool in point.tools})
    history: Dict[str, List] = {}
    for tool in tools:
        last = completeness.get(tool, ToolCompleteness()).last_data_date
        history[tool] = [
            (point.date, point.tools.get(tool, 0))
            for point in points
            if last is not None and point.date <= last and point.date != as_of_date
        ]

    projected = []
    for point in points:
        values = {}
        for tool in tools:
            last = completeness.get(tool, ToolCompleteness()).last_data_date
            values[tool] = _project_value(
                actual=int(point.tools.get(tool, 0)),
                day=point.date,
                last_data_date=last,
                as_of_date=as_of_date,
                factor=factor,
                history=history[tool],
                config=config,
            )
        projected.append(ProjectedPoint(
            date=point.date,
            tools=values,
            cost=point.cost,
            is_incomplete=any(value.status is not ValueStatus.CONFIRMED for value in values.values()),
        ))
    return projected


def _project_value(
    actual: int,
    day: date,
    last_data_date: Optional[date],
    as_of_date: date,
    factor: float,
    history: List,
    config: ProjectionConfig,
) -> ToolValue:
    confirmed = last_data_date is not None and day <= last_data_date

    if day != as_of_date:
        if confirmed:
            return ToolValue(displayed=actual, actual=actual)
        baseline = compute_baseline(history, day, config.min_same_weekday_samples)
        if baseline is None:
            return ToolValue(displayed=actual, actual=actual, status=ValueStatus.INCOMPLETE)
        return ToolValue(
            displayed=round(baseline.value),
            actual=actual,
            projected_from=actual,
            status=ValueStatus.ESTIMATED,
        )

    # today
    if factor <= 0:
        return ToolValue(displayed=actual, actual=actual, status=ValueStatus.INCOMPLETE)
    if factor >= 1:
        status = ValueStatus.CONFIRMED if confirmed else ValueStatus.INCOMPLETE
        return ToolValue(displayed=actual, actual=actual, status=status)

    baseline = compute_baseline(history, day, config.min_same_weekday_samples)
    if actual > 0:
        extrapolated = actual / factor
        if baseline is None:
            displayed = extrapolated
        else:
            blended = factor * extrapolated + (1 - factor) * baseline.value
            displayed = min(blended, baseline.value * config.cap_multiplier)
        return ToolValue(
            displayed=round(displayed),
            actual=actual,
            projected_from=actual,
            status=ValueStatus.EXTRAPOLATED,
        )

    if baseline is not None:
        return ToolValue(
            displayed=round(baseline.value),
            actual=actual,
            projected_from=actual,
            status=ValueStatus.ESTIMATED,
        )
    return ToolValue(displayed=actual, actual=actual, status=ValueStatus.INCOMPLETE)


def has_incomplete_data(points: Iterable[ProjectedPoint]) -> bool:
    return any(point.is_incomplete for point in points)


def has_projected_data(points: Iterable[ProjectedPoint]) -> bool:
    """True when any displayed value was replaced by an estimate."""
    return any(value.is_projected for point in points for value in point.tools.values())


def get_data_completeness(repository: UsageRepository, tools: Iterable[str]) -> Dict[str, ToolCompleteness]:
    latest = repository.get_latest_dates()
    return {tool: ToolCompleteness(last_data_date=latest.get(tool)) for tool in tools}


def build_daily_series(
    repository: UsageRepository,
    start: date,
    end: date,
    tools: Iterable[str],
) -> List[DailyUsagePoint]:
    """Load per-tool daily token totals, filling dates without rows with zeros."""
    tools = list(tools)
    totals: Dict[date, Dict[str, int]] = {}
    costs: Dict[date, float] = {}
    for day, tool, tokens, cost in repository.get_daily_totals(start, end):
        totals.setdefault(day, {})[tool] = tokens
        costs[day] = costs.get(day, 0.0) + cost

    series = []
    day = start
    while day <= end:
        day_totals = totals.get(day, {})
        series.append(DailyUsagePoint(
            date=day,
            tools={tool: day_totals.get(tool, 0) for tool in tools},
            cost=round(costs.get(day, 0.0), 6),
        ))
        day += timedelta(days=1)
    return series
