"""
Anonymization Engine
====================
Aggregates raw price observations into k-anonymous buckets.

Every emitted bucket is backed by at least ``k_threshold`` distinct users.
Groups below the threshold are rolled up one level in a fixed hierarchy and
re-aggregated; whatever is still too thin at the top level is omitted.

Hierarchies (``*`` is the roll-up value, rendered as null):

- categories: ``(category)`` -> ``(*)``
- trends:     ``(category, region, week)`` -> ``(category, *, week)``
- trends scoped to one region: ``(category, region, week)`` only

Weeks are never merged, so a trend series keeps its time axis. A roll-up
bucket only holds the populations suppressed below it; no user is disclosed
through two buckets of the same response.
"""

import math
import statistics
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

import structlog

from insights.config import settings
from insights.core.metrics import BUCKETS_MERGED, BUCKETS_OMITTED
from insights.core.observations import ObservationSource, RawObservation
from insights.schemas.insights import CategoryQuery, TrendsQuery

logger = structlog.get_logger()

K_ANONYMITY_THRESHOLD = 100

# Percent change beyond which a trend counts as rising/falling.
TREND_STABLE_BAND = 3.0

TOP_BRANDS = 5

KEY_FIELDS = ("category", "region", "week")

Key = tuple[Optional[str], Optional[str], Optional[str]]


@dataclass(frozen=True)
class AggregateBucket:
    """One disclosure-safe output row."""

    category: Optional[str]
    region: Optional[str]
    week: Optional[str]
    user_count: int
    item_count: int
    mean_price: float
    median_price: float
    min_price: float
    max_price: float
    merged: bool = False
    change_percent: Optional[float] = None
    direction: Optional[str] = None
    top_brands: tuple[tuple[str, float], ...] = ()


@dataclass(frozen=True)
class TrendSeries:
    """Earliest-to-latest movement of one (category, region) trend series."""

    category: Optional[str]
    region: Optional[str]
    first_week: str
    last_week: str
    points: int
    change_percent: Optional[float]
    direction: Optional[str]


@dataclass
class AggregationResult:
    """Buckets plus suppression accounting."""

    buckets: list[AggregateBucket]
    input_users: int = 0
    merged_groups: int = 0
    omitted_groups: int = 0
    omitted_users: int = 0
    truncated: bool = False


@dataclass
class _Group:
    users: set[str] = field(default_factory=set)
    values: list[float] = field(default_factory=list)
    brand_items: Counter = field(default_factory=Counter)
    brand_users: dict[str, set[str]] = field(default_factory=dict)

    def add(self, obs: RawObservation) -> None:
        self.users.add(obs.user_id)
        self.values.append(obs.value)
        if obs.brand:
            self.brand_items[obs.brand] += 1
            self.brand_users.setdefault(obs.brand, set()).add(obs.user_id)

    def absorb(self, other: "_Group") -> None:
        self.users |= other.users
        self.values.extend(other.values)
        self.brand_items.update(other.brand_items)
        for brand, users in other.brand_users.items():
            self.brand_users.setdefault(brand, set()).update(users)


def iso_week(ts: date) -> str:
    """Format a date or timestamp as an ISO week, e.g. ``2026-W07``."""
    year, week, _ = ts.isocalendar()
    return f"{year}-W{week:02d}"


def previous_iso_week(week: str) -> str:
    """The ISO week before ``week``, across year boundaries."""
    year, _, number = week.partition("-W")
    monday = date.fromisocalendar(int(year), int(number), 1)
    return iso_week(monday - timedelta(weeks=1))


def percent_change(earliest: float, latest: float) -> Optional[float]:
    """Relative change in percent; undefined when ``earliest`` is zero."""
    if earliest == 0:
        return None
    return (latest - earliest) / earliest * 100


def trend_direction(change: Optional[float]) -> Optional[str]:
    if change is None:
        return None
    if change > TREND_STABLE_BAND:
        return "rising"
    if change < -TREND_STABLE_BAND:
        return "falling"
    return "stable"


def grouping_levels(query: Union[CategoryQuery, TrendsQuery]) -> tuple[tuple[str, ...], ...]:
    """Merge hierarchy for a query, finest level first."""
    if isinstance(query, TrendsQuery):
        if query.region:
            return (("category", "region", "week"),)
        return (("category", "region", "week"), ("category", "week"))
    return (("category",), ())


def _project(values: dict[str, Optional[str]], level: Sequence[str]) -> Key:
    return tuple(values[name] if name in level else None for name in KEY_FIELDS)  # type: ignore[return-value]


def _sort_key(bucket: AggregateBucket) -> tuple:
    # Roll-up values (None) sort after every concrete value.
    return tuple(
        (value is None, value or "")
        for value in (bucket.category, bucket.region, bucket.week)
    )


def _top_brands(group: _Group, k_threshold: int) -> tuple[tuple[str, float], ...]:
    """
    Largest brands by share of branded items.

    A brand is only named when it is itself backed by ``k_threshold``
    distinct users.
    """
    branded = sum(group.brand_items.values())
    eligible = [
        (brand, count)
        for brand, count in group.brand_items.items()
        if len(group.brand_users[brand]) >= k_threshold
    ]
    eligible.sort(key=lambda item: (-item[1], item[0]))
    return tuple((brand, count / branded) for brand, count in eligible[:TOP_BRANDS])


def _make_bucket(key: Key, group: _Group, merged: bool, k_threshold: int) -> AggregateBucket:
    values = group.values
    return AggregateBucket(
        category=key[0],
        region=key[1],
        week=key[2],
        user_count=len(group.users),
        item_count=len(values),
        mean_price=math.fsum(values) / len(values),
        median_price=float(statistics.median(values)),
        min_price=min(values),
        max_price=max(values),
        merged=merged,
        top_brands=_top_brands(group, k_threshold),
    )


def _with_trends(buckets: list[AggregateBucket]) -> list[AggregateBucket]:
    """
    Attach week-over-week change within each (category, region) series.

    Change is only reported against the immediately preceding ISO week; a
    point whose previous week was suppressed gets no change.
    """
    means = {(b.category, b.region, b.week): b.mean_price for b in buckets}
    out = []
    for bucket in buckets:
        change = None
        previous = (bucket.category, bucket.region, previous_iso_week(bucket.week))
        if previous in means:
            change = percent_change(means[previous], bucket.mean_price)
        out.append(replace(bucket, change_percent=change, direction=trend_direction(change)))
    return out


def summarize_series(buckets: Sequence[AggregateBucket]) -> list[TrendSeries]:
    """
    Earliest-to-latest change per (category, region) series.

    Series with fewer than two emitted weeks have no movement and are skipped.
    ``buckets`` must be in key order.
    """
    series: dict[tuple[Optional[str], Optional[str]], list[AggregateBucket]] = {}
    for bucket in buckets:
        series.setdefault((bucket.category, bucket.region), []).append(bucket)

    summaries = []
    for (category, region), points in series.items():
        if len(points) < 2:
            continue
        first, last = points[0], points[-1]
        change = percent_change(first.mean_price, last.mean_price)
        summaries.append(
            TrendSeries(
                category=category,
                region=region,
                first_week=first.week,
                last_week=last.week,
                points=len(points),
                change_percent=change,
                direction=trend_direction(change),
            )
        )
    return summaries


def build_buckets(
    observations: Iterable[RawObservation],
    levels: Sequence[Sequence[str]],
    k_threshold: int = K_ANONYMITY_THRESHOLD,
) -> AggregationResult:
    """
    Group observations and enforce k-anonymity over a merge hierarchy.

    Args:
        observations: Raw user-level observations
        levels: Key fields kept at each level, finest first
        k_threshold: Minimum distinct users per emitted bucket

    Returns:
        AggregationResult with buckets in deterministic key order
    """
    pending: list[dict[Key, _Group]] = [{} for _ in levels]
    all_users: set[str] = set()

    for obs in observations:
        all_users.add(obs.user_id)
        values = {
            "category": obs.category,
            "region": obs.region or None,
            "week": iso_week(obs.observed_at),
        }
        # An unspecified region is never a region of its own: the observation
        # enters at the first level that does not key on it.
        for depth, level in enumerate(levels):
            if all(values[name] is not None for name in level):
                pending[depth].setdefault(_project(values, level), _Group()).add(obs)
                break

    result = AggregationResult(buckets=[], input_users=len(all_users))
    omitted_users: set[str] = set()

    for depth, level in enumerate(levels):
        for key in sorted(pending[depth], key=lambda k: tuple((v is None, v or "") for v in k)):
            group = pending[depth][key]
            if len(group.users) >= k_threshold:
                result.buckets.append(_make_bucket(key, group, depth > 0, k_threshold))
            elif depth + 1 < len(levels):
                coarser = _project(dict(zip(KEY_FIELDS, key)), levels[depth + 1])
                pending[depth + 1].setdefault(coarser, _Group()).absorb(group)
                result.merged_groups += 1
            else:
                omitted_users |= group.users
                result.omitted_groups += 1

    result.omitted_users = len(omitted_users)
    result.buckets.sort(key=_sort_key)
    return result


class AnonymizationEngine:
    """
    Reads observations for a query and returns k-anonymous buckets.

    Stateless apart from its collaborators; concurrent calls are independent.
    """

    def __init__(self, source: ObservationSource, k_threshold: Optional[int] = None):
        self.source = source
        self.k_threshold = k_threshold or settings.k_anonymity_threshold

    async def aggregate(
        self,
        query: Union[CategoryQuery, TrendsQuery],
        now: Optional[datetime] = None,
    ) -> AggregationResult:
        """Compute disclosure-safe buckets for a validated query."""
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(weeks=query.weeks)

        batch = await self.source.fetch(
            since=since,
            category=query.category if isinstance(query, TrendsQuery) else None,
            region=query.region,
        )

        result = build_buckets(batch.observations, grouping_levels(query), self.k_threshold)
        result.truncated = batch.truncated
        if isinstance(query, TrendsQuery):
            result.buckets = _with_trends(result.buckets)

        BUCKETS_MERGED.inc(result.merged_groups)
        BUCKETS_OMITTED.inc(result.omitted_groups)

        logger.info(
            "Aggregated observations",
            kind=query.kind,
            observations=len(batch.observations),
            buckets=len(result.buckets),
            merged_groups=result.merged_groups,
            omitted_groups=result.omitted_groups,
            truncated=batch.truncated,
            k_threshold=self.k_threshold,
        )
        return result
