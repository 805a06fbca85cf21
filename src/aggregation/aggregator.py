"""Aggregate queries over the event store.

The aggregator owns exactly one thing: composing site scope, time range
and a compiled cohort predicate into a single parameterised query, then
mapping the rows back into typed `AggregateRow`s. Every column name and
aggregate expression here is code-owned; user input only ever reaches the
store as a bound parameter.

Store failures are not handled here. `StoreQueryError` propagates to the
orchestrator, which decides how to degrade.
"""

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from functools import wraps
from typing import Any

from src.aggregation.timerange import TimeRange
from src.cohorts.compiler import ALWAYS_TRUE, CompiledPredicate
from src.warehouse.store import EventStore

logger = logging.getLogger(__name__)

SLOW_QUERY_S = 1.0
GOAL_EVENT_TYPE = "experiment_goal"


@dataclass(frozen=True)
class Measure:
    name: str
    expression: str
    params: tuple = ()


@dataclass(frozen=True)
class GroupBy:
    name: str
    expressions: tuple[str, ...] = ()
    params: tuple = ()


NO_GROUPING = GroupBy("none")
BY_PAGE_PATH = GroupBy("page_path", ("page_path",))
BY_DEVICE_TYPE = GroupBy("device_type", ("device_type",))


def by_variant(experiment_id: str) -> GroupBy:
    # experiment_ids and variant_ids are parallel arrays on each event
    return GroupBy(
        "variant",
        ("variant_ids[list_position(experiment_ids, ?)]",),
        (experiment_id,),
    )


BY_GOAL = GroupBy(
    "goal",
    (
        "json_extract_string(data, '$.variant_id')",
        "json_extract_string(data, '$.goal_id')",
        "json_extract_string(data, '$.goal_type')",
    ),
)

SESSIONS = Measure("sessions", "COUNT(DISTINCT session_id)")
TOTAL_EVENTS = Measure("total_events", "COUNT(*)")
SESSIONS_WITH_CLICKS = Measure(
    "sessions_with_clicks",
    "COUNT(DISTINCT session_id) FILTER (WHERE event_type = 'click')",
)
TOTAL_CLICKS = Measure("total_clicks", "COUNT(*) FILTER (WHERE event_type = 'click')")
TOTAL_SCROLLS = Measure("total_scrolls", "COUNT(*) FILTER (WHERE event_type = 'scroll')")
VIEWS = Measure("views", "COUNT(*)")
GOAL_CONVERSIONS = Measure("conversions", "COUNT(DISTINCT session_id)")
GOAL_REVENUE = Measure(
    "total_revenue",
    "COALESCE(SUM(TRY_CAST(json_extract_string(data, '$.revenue_value') AS DOUBLE)), 0)",
)

COHORT_SUMMARY_MEASURES = (SESSIONS, TOTAL_EVENTS, SESSIONS_WITH_CLICKS, TOTAL_CLICKS, TOTAL_SCROLLS)


def conversions_measure(experiment_id: str, goal_event: str) -> Measure:
    """Sessions that fired the goal event, so conversions never exceed users.

    Goal events only count for the experiment named in their payload; a
    session enrolled in several experiments converts for each separately.
    """
    return Measure(
        "conversions",
        "COUNT(DISTINCT session_id) FILTER (WHERE event_type = ? "
        "OR json_extract_string(data, '$.event_name') = ? "
        f"OR (event_type = '{GOAL_EVENT_TYPE}' "
        "AND json_extract_string(data, '$.experiment_id') = ?))",
        (goal_event, goal_event, experiment_id),
    )


@dataclass
class AggregateRow:
    key: Any
    values: dict[str, int | float] = field(default_factory=dict)

    def __getitem__(self, name: str) -> int | float:
        return self.values.get(name, 0)

    def get(self, name: str, default: int | float = 0) -> int | float:
        return self.values.get(name, default)


class QueryBuilder:
    def __init__(self, table: str = "events"):
        self.table = table
        self.filters: list[str] = []
        self.params: list[Any] = []

    def add_site_filter(self, site_id: str) -> "QueryBuilder":
        self.filters.append("site_id = ?")
        self.params.append(site_id)
        return self

    def add_date_range(self, start: datetime, end: datetime) -> "QueryBuilder":
        self.filters.append("timestamp BETWEEN ? AND ?")
        self.params.extend([start, end])
        return self

    def add_predicate(self, predicate: CompiledPredicate) -> "QueryBuilder":
        sql, params = predicate.to_sql()
        self.filters.append(f"({sql})")
        self.params.extend(params)
        return self

    def add_filter(self, sql: str, params: Sequence[Any] = ()) -> "QueryBuilder":
        self.filters.append(sql)
        self.params.extend(params)
        return self

    def build(
        self,
        measures: Sequence[Measure],
        group_by: GroupBy,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> tuple[str, list[Any]]:
        select = [f"{expr} AS group_{i}" for i, expr in enumerate(group_by.expressions)]
        select += [f"{m.expression} AS {m.name}" for m in measures]
        params = list(group_by.params)
        for m in measures:
            params.extend(m.params)
        params.extend(self.params)

        where_clause = " AND ".join(self.filters) if self.filters else "1=1"
        sql = f"SELECT {', '.join(select)} FROM {self.table} WHERE {where_clause}"
        if group_by.expressions:
            positions = ", ".join(str(i + 1) for i in range(len(group_by.expressions)))
            sql += f" GROUP BY {positions}"
        group_columns = [f"group_{i}" for i in range(len(group_by.expressions))]
        if order_by is not None:
            direction = "DESC" if descending else "ASC"
            sql += f" ORDER BY {', '.join([f'{order_by} {direction}'] + group_columns)}"
        elif group_columns:
            sql += f" ORDER BY {', '.join(group_columns)}"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        return sql, params


def monitor_query_performance(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.monotonic()
        try:
            return func(*args, **kwargs)
        finally:
            elapsed = time.monotonic() - start_time
            if elapsed > SLOW_QUERY_S:
                logger.warning(f"Slow query: {func.__name__} took {elapsed:.2f}s")
    return wrapper


@monitor_query_performance
def aggregate(
    store: EventStore,
    site_id: str,
    predicate: CompiledPredicate,
    time_range: TimeRange,
    group_by: GroupBy = NO_GROUPING,
    measures: Sequence[Measure] = COHORT_SUMMARY_MEASURES,
    filters: Sequence[tuple[str, Sequence[Any]]] = (),
    order_by: str | None = None,
    limit: int | None = None,
    timeout: float | None = None,
    now: datetime | None = None,
) -> dict[Any, AggregateRow]:
    """Run one aggregate query and key the rows by their group value(s).

    With no grouping the result holds a single row under the key None.
    With one group expression the key is that value; with several it is a
    tuple of them. Row order follows the query's ORDER BY.
    """
    if order_by is not None and order_by not in {m.name for m in measures}:
        raise ValueError(f"Cannot order by unknown measure {order_by!r}")

    start, end = time_range.resolve(now)
    builder = QueryBuilder().add_site_filter(site_id).add_date_range(start, end)
    for sql, params in filters:
        builder.add_filter(sql, params)
    builder.add_predicate(predicate)
    sql, params = builder.build(measures, group_by, order_by=order_by, limit=limit)

    logger.debug(f"aggregate[{group_by.name}] site={site_id} predicate={predicate.render_inline()}")
    rows = store.execute(sql, params, timeout=timeout)

    width = len(group_by.expressions)
    result: dict[Any, AggregateRow] = {}
    for row in rows:
        keys = tuple(row.get(f"group_{i}") for i in range(width))
        key = None if width == 0 else keys[0] if width == 1 else keys
        values = {m.name: _number(row.get(m.name)) for m in measures}
        result[key] = AggregateRow(key, values)
    return result


def _number(value) -> int | float:
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    return float(value)


def cohort_summary(store, site_id, predicate, time_range, **kwargs) -> AggregateRow:
    rows = aggregate(store, site_id, predicate, time_range, **kwargs)
    return rows.get(None) or AggregateRow(None, {m.name: 0 for m in COHORT_SUMMARY_MEASURES})


def comparison_summary(store, site_id, predicate, time_range, **kwargs) -> AggregateRow:
    measures = (SESSIONS, TOTAL_EVENTS, TOTAL_CLICKS)
    rows = aggregate(store, site_id, predicate, time_range, measures=measures, **kwargs)
    return rows.get(None) or AggregateRow(None, {m.name: 0 for m in measures})


def top_pages(store, site_id, predicate, time_range, limit: int = 10, **kwargs) -> list[AggregateRow]:
    rows = aggregate(
        store, site_id, predicate, time_range,
        group_by=BY_PAGE_PATH,
        measures=(VIEWS, SESSIONS),
        filters=[("page_path IS NOT NULL AND page_path != ''", ())],
        order_by="views",
        limit=limit,
        **kwargs,
    )
    return list(rows.values())


def device_breakdown(store, site_id, predicate, time_range, **kwargs) -> list[AggregateRow]:
    rows = aggregate(
        store, site_id, predicate, time_range,
        group_by=BY_DEVICE_TYPE,
        measures=(SESSIONS,),
        **kwargs,
    )
    return list(rows.values())


def variant_counts(
    store: EventStore,
    site_id: str,
    experiment_id: str,
    goal_event: str,
    time_range: TimeRange,
    **kwargs,
) -> dict[str, AggregateRow]:
    """Users and converting users per variant, ordered by variant id.

    conversions <= users holds by construction (both are distinct session
    counts, one filtered); rows that somehow break it are clamped.
    """
    rows = aggregate(
        store, site_id, ALWAYS_TRUE, time_range,
        group_by=by_variant(experiment_id),
        measures=(
            Measure("users", "COUNT(DISTINCT session_id)"),
            conversions_measure(experiment_id, goal_event),
        ),
        filters=[("list_contains(experiment_ids, ?)", (experiment_id,))],
        **kwargs,
    )
    counts = {}
    for variant_id, row in rows.items():
        if variant_id is None:
            continue
        if row["conversions"] > row["users"]:
            logger.warning(
                f"Variant {variant_id} of {experiment_id} reported "
                f"{row['conversions']} conversions for {row['users']} users; clamping"
            )
            row.values["conversions"] = row["users"]
        counts[str(variant_id)] = row
    return counts


def goal_breakdown(
    store: EventStore,
    site_id: str,
    experiment_id: str,
    time_range: TimeRange,
    **kwargs,
) -> dict[tuple[str, str, str], AggregateRow]:
    rows = aggregate(
        store, site_id, ALWAYS_TRUE, time_range,
        group_by=BY_GOAL,
        measures=(GOAL_CONVERSIONS, GOAL_REVENUE),
        filters=[
            ("event_type = ?", (GOAL_EVENT_TYPE,)),
            ("json_extract_string(data, '$.experiment_id') = ?", (experiment_id,)),
        ],
        **kwargs,
    )
    return {key: row for key, row in rows.items() if key[0] is not None and key[1] is not None}
