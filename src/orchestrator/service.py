"""Analytics service: cohort metrics and experiment results behind the cache.

Every request goes through the same steps:

    validate scope -> derive cache key -> cache hit? return
                                       -> miss: compile rules -> query store
                                                -> (experiments) statistics
                                                -> populate cache -> return

Scope violations are the only errors a caller ever sees. Store failures,
timeouts and unexpected errors inside a computation are logged and turned
into the zeroed result shape with `query_failed=True`; such results are
never cached, so the next request tries again.
"""

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

from src.aggregation import aggregator
from src.aggregation.timerange import TimeRange
from src.analysis import stats
from src.ab.experiment import Experiment
from src.cache.results import CacheWaitTimeout, ResultCache, cache_key
from src.cohorts.compiler import compile_rules
from src.cohorts.rules import Cohort
from src.orchestrator.config import AnalyticsConfig
from src.orchestrator.repository import CohortRepository, ExperimentRepository
from src.orchestrator.results import (
    CohortComparison,
    CohortComparisonRow,
    CohortMetrics,
    CohortMetricsResult,
    ComparisonResult,
    DeviceRow,
    ExperimentResult,
    GoalResult,
    PageRow,
    VariantResult,
)
from src.warehouse.store import EventStore, StoreQueryError

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


class ScopeViolation(PermissionError):
    """The requested entity does not exist for the requesting site."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AnalyticsService:
    def __init__(
        self,
        store: EventStore,
        cohorts: CohortRepository,
        experiments: ExperimentRepository,
        cache: ResultCache,
        config: AnalyticsConfig | None = None,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.cohorts = cohorts
        self.experiments = experiments
        self.cache = cache
        self.config = config or AnalyticsConfig()
        self.now = now

    # ---- cohorts -------------------------------------------------------

    def cohort_metrics(
        self,
        site_id: str,
        cohort_id: str,
        start: datetime | str | None = None,
        end: datetime | str | None = None,
        timeout: float | None = None,
    ) -> CohortMetricsResult:
        cohort = self._scoped_cohort(site_id, cohort_id)
        time_range = self._time_range(start, end)
        key = cache_key(
            site_id, "cohort-metrics",
            cohort_id=cohort.id,
            rules=cohort.rules_hash,
            top_pages=self.config.top_pages_limit,
            **time_range.key_parts(),
        )
        return self._serve(
            key,
            lambda: self._compute_cohort_metrics(cohort, time_range),
            ttl_s=self.config.cohort_ttl_s,
            timeout=timeout,
            on_failure=lambda: CohortMetricsResult(cohort=cohort, query_failed=True),
        )

    def compare_cohorts(
        self,
        site_id: str,
        cohort_ids: Sequence[str],
        start: datetime | str | None = None,
        end: datetime | str | None = None,
        timeout: float | None = None,
    ) -> CohortComparison:
        """One row per cohort. Presentational only: no test across cohorts."""
        if not cohort_ids:
            raise ValueError("cohort_ids must not be empty")
        cohorts = [self._scoped_cohort(site_id, cid) for cid in sorted(set(cohort_ids))]
        time_range = self._time_range(start, end)
        key = cache_key(
            site_id, "cohort-comparison",
            cohorts={c.id: c.rules_hash for c in cohorts},
            **time_range.key_parts(),
        )
        return self._serve(
            key,
            lambda: self._compute_comparison(site_id, cohorts, time_range),
            ttl_s=self.config.cohort_ttl_s,
            timeout=timeout,
            on_failure=lambda: CohortComparison(query_failed=True),
        )

    def _compute_cohort_metrics(self, cohort: Cohort, time_range: TimeRange) -> CohortMetricsResult:
        compiled = compile_rules(cohort.rules)
        predicate = compiled.predicate
        query = dict(timeout=self.config.query_timeout_s, now=self.now())

        summary = aggregator.cohort_summary(self.store, cohort.site_id, predicate, time_range, **query)
        pages = aggregator.top_pages(
            self.store, cohort.site_id, predicate, time_range,
            limit=self.config.top_pages_limit, **query,
        )
        devices = aggregator.device_breakdown(self.store, cohort.site_id, predicate, time_range, **query)

        sessions = int(summary["sessions"])
        with_clicks = int(summary["sessions_with_clicks"])
        return CohortMetricsResult(
            cohort=cohort,
            metrics=CohortMetrics(
                sessions=sessions,
                total_events=int(summary["total_events"]),
                sessions_with_clicks=with_clicks,
                total_clicks=int(summary["total_clicks"]),
                total_scrolls=int(summary["total_scrolls"]),
                click_rate=round(with_clicks / sessions * 100, 1) if sessions else 0.0,
            ),
            top_pages=[
                PageRow(page_path=str(row.key), views=int(row["views"]), sessions=int(row["sessions"]))
                for row in pages
            ],
            device_breakdown=[
                DeviceRow(device_type=str(row.key or ""), sessions=int(row["sessions"]))
                for row in devices
            ],
            warnings=[str(w) for w in compiled.warnings],
        )

    def _compute_comparison(
        self, site_id: str, cohorts: list[Cohort], time_range: TimeRange,
    ) -> CohortComparison:
        rows = []
        for cohort in cohorts:
            predicate = compile_rules(cohort.rules).predicate
            summary = aggregator.comparison_summary(
                self.store, site_id, predicate, time_range,
                timeout=self.config.query_timeout_s, now=self.now(),
            )
            sessions = int(summary["sessions"])
            events = int(summary["total_events"])
            rows.append(CohortComparisonRow(
                cohort_id=cohort.id,
                cohort_name=cohort.name,
                sessions=sessions,
                events=events,
                clicks=int(summary["total_clicks"]),
                events_per_session=round(events / sessions, 1) if sessions else 0.0,
            ))
        return CohortComparison(comparison=rows)

    # ---- experiments ---------------------------------------------------

    def experiment_results(
        self,
        site_id: str,
        experiment_id: str,
        start: datetime | str | None = None,
        end: datetime | str | None = None,
        include_goals: bool = True,
        timeout: float | None = None,
    ) -> ExperimentResult:
        experiment = self._scoped_experiment(site_id, experiment_id)
        return self._experiment_results(experiment, self._time_range(start, end), include_goals, timeout)

    def experiments_results(
        self,
        site_id: str,
        experiment_ids: Sequence[str],
        start: datetime | str | None = None,
        end: datetime | str | None = None,
        include_goals: bool = True,
        timeout: float | None = None,
    ) -> list[ExperimentResult]:
        if not experiment_ids:
            raise ValueError("experiment_ids must not be empty")
        # Check every id before running any query
        experiments = [self._scoped_experiment(site_id, eid) for eid in dict.fromkeys(experiment_ids)]
        time_range = self._time_range(start, end)
        return [
            self._experiment_results(e, time_range, include_goals, timeout)
            for e in experiments
        ]

    def _experiment_results(
        self,
        experiment: Experiment,
        time_range: TimeRange,
        include_goals: bool,
        timeout: float | None,
    ) -> ExperimentResult:
        key = cache_key(
            experiment.site_id, "experiment-results",
            experiment_id=experiment.experiment_id,
            version=experiment.version,
            goals=include_goals,
            **time_range.key_parts(),
        )
        return self._serve(
            key,
            lambda: self._compute_experiment(experiment, time_range, include_goals),
            ttl_s=self.config.results_ttl_s,
            timeout=timeout,
            on_failure=lambda: ExperimentResult.empty(experiment, query_failed=True),
        )

    def _compute_experiment(
        self, experiment: Experiment, time_range: TimeRange, include_goals: bool,
    ) -> ExperimentResult:
        now = self.now()
        query = dict(timeout=self.config.query_timeout_s, now=now)
        counts = aggregator.variant_counts(
            self.store, experiment.site_id, experiment.experiment_id,
            experiment.goal_event, time_range, **query,
        )
        goal_rows = {}
        if include_goals:
            goal_rows = aggregator.goal_breakdown(
                self.store, experiment.site_id, experiment.experiment_id, time_range, **query,
            )

        variants = [
            stats.VariantStats(
                variant_id=variant_id,
                users=int(counts[variant_id]["users"]),
                conversions=int(counts[variant_id]["conversions"]),
                variant_name=experiment.variant_name(variant_id),
                goals=self._goal_stats(experiment, variant_id, int(counts[variant_id]["users"]), goal_rows),
            )
            for variant_id in _variant_order(experiment, counts)
        ]

        analysis = stats.analyze(variants)
        total_users = sum(v.users for v in variants)
        status = stats.status_message(
            analysis.confidence_level, analysis.is_significant,
            analysis.winner_variant_id, total_users,
        )
        minimum_sample_size = stats.calculate_minimum_sample_size(
            self._baseline_rate(variants), self.config.minimum_detectable_effect,
        )

        return ExperimentResult(
            experiment_id=experiment.experiment_id,
            experiment_name=experiment.name,
            status=experiment.status.value,
            total_users=total_users,
            variants=[_variant_result(v) for v in variants],
            is_significant=analysis.is_significant,
            confidence_level=analysis.confidence_level,
            winner_variant_id=analysis.winner_variant_id,
            z_score=analysis.z_score,
            lift_percentage=analysis.lift_percentage,
            comparisons=[
                ComparisonResult(
                    variant_id=c.variant_id,
                    control_id=c.control_id,
                    z_score=c.z_score,
                    confidence_level=c.confidence_level,
                    lift_percentage=c.lift_percentage,
                    is_significant=c.is_significant,
                )
                for c in analysis.comparisons
            ],
            status_message=status.value,
            status_text=status.describe(
                analysis.confidence_level,
                experiment.variant_name(analysis.winner_variant_id) if analysis.winner_variant_id else None,
            ),
            started_at=experiment.started_at,
            days_running=_days_running(experiment.started_at, now),
            minimum_sample_size=minimum_sample_size,
            has_enough_data=minimum_sample_size is not None and total_users >= 2 * minimum_sample_size,
        )

    def _baseline_rate(self, variants: list[stats.VariantStats]) -> float:
        if variants and variants[0].users > 0 and 0 < variants[0].conversion_rate < 1:
            return variants[0].conversion_rate
        return self.config.fallback_baseline_rate

    @staticmethod
    def _goal_stats(
        experiment: Experiment,
        variant_id: str,
        users: int,
        goal_rows: dict[tuple[str, str, str], aggregator.AggregateRow],
    ) -> tuple[stats.GoalStats, ...]:
        goals = []
        for (row_variant, goal_id, goal_type), row in goal_rows.items():
            if row_variant != variant_id:
                continue
            goal = experiment.goal(goal_id)
            conversions = min(int(row["conversions"]), users)
            revenue = float(row["total_revenue"]) or None
            goals.append(stats.GoalStats(
                goal_id=goal_id,
                goal_type=goal_type or (goal.type.value if goal else ""),
                conversions=conversions,
                conversion_rate=conversions / users if users else 0.0,
                goal_name=goal.name if goal else goal_id,
                is_primary=goal.is_primary if goal else False,
                total_revenue=revenue,
                avg_order_value=revenue / conversions if revenue and conversions else None,
                revenue_per_visitor=revenue / users if revenue and users else None,
            ))
        return tuple(goals)

    # ---- shared --------------------------------------------------------

    def _scoped_cohort(self, site_id: str, cohort_id: str) -> Cohort:
        if not site_id or not cohort_id:
            raise ValueError("site_id and cohort_id are required")
        cohort = self.cohorts.get_cohort(cohort_id)
        if cohort is None or cohort.site_id != site_id:
            raise ScopeViolation(f"Cohort {cohort_id} not found for site {site_id}")
        return cohort

    def _scoped_experiment(self, site_id: str, experiment_id: str) -> Experiment:
        if not site_id or not experiment_id:
            raise ValueError("site_id and experiment_id are required")
        experiment = self.experiments.get_experiment(experiment_id)
        if experiment is None or experiment.site_id != site_id:
            raise ScopeViolation(f"Experiment {experiment_id} not found for site {site_id}")
        return experiment

    def _time_range(self, start, end) -> TimeRange:
        return TimeRange.from_request(start, end, window_days=self.config.default_window_days)

    def _serve(
        self,
        key: str,
        compute: Callable[[], Any],
        ttl_s: float,
        timeout: float | None,
        on_failure: Callable[[], Any],
    ) -> Any:
        try:
            return self.cache.get_or_compute(key, compute, ttl_s=ttl_s, timeout=timeout)
        except StoreQueryError as exc:
            logger.error(f"Store query failed for {key}: {exc}")
        except CacheWaitTimeout:
            logger.warning(f"Request for {key} stopped waiting")
        except Exception:
            logger.exception(f"Computation failed for {key}")
        return on_failure()


def _variant_order(experiment: Experiment, counts: dict) -> list[str]:
    """Configured variants first, in definition order, then unknown ids sorted."""
    configured = [v.id for v in experiment.variants if v.id in counts]
    extra = sorted(vid for vid in counts if vid not in {v.id for v in experiment.variants})
    return configured + extra


def _variant_result(v: stats.VariantStats) -> VariantResult:
    return VariantResult(
        variant_id=v.variant_id,
        variant_name=v.variant_name or v.variant_id,
        users=v.users,
        conversions=v.conversions,
        conversion_rate=v.conversion_rate,
        goals=[
            GoalResult(
                goal_id=g.goal_id,
                goal_name=g.goal_name,
                goal_type=g.goal_type,
                is_primary=g.is_primary,
                conversions=g.conversions,
                conversion_rate=g.conversion_rate,
                total_revenue=g.total_revenue,
                avg_order_value=g.avg_order_value,
                revenue_per_visitor=g.revenue_per_visitor,
            )
            for g in v.goals
        ],
    )


def _days_running(started_at: datetime | None, now: datetime) -> int:
    if started_at is None:
        return 0
    if started_at.tzinfo is not None:
        started_at = started_at.astimezone(timezone.utc).replace(tzinfo=None)
    return max(0, int((now - started_at).total_seconds() // SECONDS_PER_DAY))
