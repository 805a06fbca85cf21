"""Export cohort and experiment results from the warehouse to JSON.

Runs the analytics service against a DuckDB warehouse (as filled by
`src.simulator.generate`) and writes everything the dashboard shows for
the demo site into one file. `ci/validate_analytics.py` checks that file.

Usage:
    python -m src.analysis.export
    python -m src.analysis.export --db data/events.duckdb --out src/dashboard/data.json
"""

import argparse
import json
import logging
from pathlib import Path

from src.ab.experiment import CHECKOUT_CTA_EXPERIMENT
from src.cache.results import ResultCache
from src.cohorts.rules import Cohort, Rule
from src.orchestrator.config import AnalyticsConfig
from src.orchestrator.repository import InMemoryCohortRepository, InMemoryExperimentRepository
from src.orchestrator.service import AnalyticsService
from src.warehouse.db import get_connection
from src.warehouse.store import DuckDBEventStore

DEMO_SITE = CHECKOUT_CTA_EXPERIMENT.site_id

DEMO_COHORTS = (
    Cohort(
        id="coh_mobile",
        site_id=DEMO_SITE,
        name="Mobile visitors",
        rules=(Rule(field="device_type", operator="equals", value="mobile"),),
    ),
    Cohort(
        id="coh_search",
        site_id=DEMO_SITE,
        name="Search referrals",
        rules=(Rule(field="referrer", operator="contains", value="google"),),
    ),
    Cohort(
        id="coh_frustrated",
        site_id=DEMO_SITE,
        name="Rage clickers",
        rules=(Rule(field="has_rage_clicks", operator="equals", value="true"),),
    ),
)


def build_export(service: AnalyticsService) -> dict:
    cohort_ids = [c.id for c in DEMO_COHORTS]
    cohorts = [service.cohort_metrics(DEMO_SITE, cid) for cid in cohort_ids]
    comparison = service.compare_cohorts(DEMO_SITE, cohort_ids)
    experiments = service.experiments_results(DEMO_SITE, [CHECKOUT_CTA_EXPERIMENT.experiment_id])
    return {
        "site_id": DEMO_SITE,
        "cohorts": [c.model_dump(mode="json") for c in cohorts],
        "comparison": comparison.model_dump(mode="json")["comparison"],
        "experiments": [e.model_dump(mode="json") for e in experiments],
    }


def main(args: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Export analytics results to JSON")
    parser.add_argument("--db", type=str, default="data/events.duckdb", help="Database path")
    parser.add_argument("--out", type=str, default="src/dashboard/data.json", help="Output JSON path")
    parser.add_argument("--days", type=int, default=30, help="Trailing window in days")
    parser.add_argument("--log-level", type=str, default="WARNING", help="Logging level")
    opts = parser.parse_args(args)

    logging.basicConfig(
        level=opts.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = AnalyticsConfig(default_window_days=opts.days)
    conn = get_connection(opts.db)
    cache = ResultCache(max_entries=config.cache_max_entries, max_workers=config.cache_workers)
    service = AnalyticsService(
        store=DuckDBEventStore(conn, default_timeout=config.query_timeout_s),
        cohorts=InMemoryCohortRepository(DEMO_COHORTS),
        experiments=InMemoryExperimentRepository([CHECKOUT_CTA_EXPERIMENT]),
        cache=cache,
        config=config,
    )

    print(f"Exporting results for {DEMO_SITE} from {opts.db}...")
    try:
        data = build_export(service)
    finally:
        cache.close()
        conn.close()

    out = Path(opts.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(data, indent=2))

    for cohort in data["cohorts"]:
        print(f"  Cohort {cohort['cohort']['name']}: {cohort['metrics']['sessions']:,} sessions")
    for exp in data["experiments"]:
        print(f"  Experiment {exp['experiment_id']}: {exp['status_text']}")
    print(f"Wrote {out}")


if __name__ == "__main__":
    main()
