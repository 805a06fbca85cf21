"""CI validation: verify exported analytics data is complete and sane.

This script is the final gate in CI. It reads the exported dashboard JSON
and asserts structural and logical invariants. If anything is wrong, it
exits non-zero and fails the build.

Usage:
    python ci/validate_analytics.py
    python ci/validate_analytics.py --data src/dashboard/data.json
"""

import argparse
import json
import sys
from pathlib import Path

REQUIRED_TOP_KEYS = {"cohorts", "comparison", "experiments"}
METRIC_FIELDS = {
    "sessions",
    "total_events",
    "sessions_with_clicks",
    "total_clicks",
    "total_scrolls",
    "click_rate",
}
RESULT_FIELDS = {
    "total_users",
    "is_significant",
    "confidence_level",
    "winner_variant_id",
    "status_message",
    "minimum_sample_size",
    "has_enough_data",
    "query_failed",
}
STATUS_MESSAGES = (
    "not enough data",
    "trending but not significant",
    "winner found",
    "no meaningful difference",
)


def validate(data: dict) -> list[str]:
    """Return a list of validation errors (empty = pass)."""
    errors = []

    # --- Top-level structure ---
    for key in sorted(REQUIRED_TOP_KEYS):
        if key not in data:
            errors.append(f"Missing top-level key: {key}")

    if errors:
        return errors  # Can't continue without structure

    # --- Cohorts ---
    cohorts = data["cohorts"]
    if not cohorts:
        errors.append("cohorts is empty: no cohort metrics were exported")
    for item in cohorts:
        name = item.get("cohort", {}).get("id", "UNKNOWN")
        if item.get("query_failed"):
            errors.append(f"Cohort {name} query failed")
        metrics = item.get("metrics", {})
        missing = METRIC_FIELDS - set(metrics.keys())
        if missing:
            errors.append(f"Cohort {name} metrics missing fields: {sorted(missing)}")
            continue
        if metrics["sessions_with_clicks"] > metrics["sessions"]:
            errors.append(f"Cohort {name} has more clicking sessions than sessions")
        if not 0 <= metrics["click_rate"] <= 100:
            errors.append(f"Cohort {name} has invalid click rate: {metrics['click_rate']}%")

    # --- Comparison ---
    comparison = data["comparison"]
    if len(comparison) != len(cohorts):
        errors.append(
            f"Comparison has {len(comparison)} rows for {len(cohorts)} cohorts"
        )
    for row in comparison:
        if row["sessions"] > 0 and row["events"] < row["sessions"]:
            errors.append(f"Comparison row {row['cohort_id']} has fewer events than sessions")

    # --- Experiments ---
    experiments = data["experiments"]
    if not experiments:
        errors.append("experiments is empty: no experiment data exported")
    for exp in experiments:
        exp_id = exp.get("experiment_id", "UNKNOWN")

        missing = RESULT_FIELDS - set(exp.keys())
        if missing:
            errors.append(f"Experiment {exp_id} missing fields: {sorted(missing)}")
            continue

        if exp["query_failed"]:
            errors.append(f"Experiment {exp_id} query failed")

        variants = exp.get("variants") or []
        if len(variants) < 2:
            errors.append(f"Experiment {exp_id} has fewer than 2 variants with data")

        for v in variants:
            if v["users"] <= 0:
                errors.append(f"Experiment {exp_id} variant {v['variant_id']} has 0 users")
            if v["conversions"] > v["users"]:
                errors.append(
                    f"Experiment {exp_id} variant {v['variant_id']} has more conversions than users"
                )

        if sum(v["users"] for v in variants) != exp["total_users"]:
            errors.append(f"Experiment {exp_id} total_users does not match its variants")

        confidence = exp["confidence_level"]
        if confidence < 0 or confidence > 100:
            errors.append(f"Experiment {exp_id} confidence out of range: {confidence}")

        winner = exp["winner_variant_id"]
        if winner is not None and winner not in {v["variant_id"] for v in variants}:
            errors.append(f"Experiment {exp_id} winner {winner} is not one of its variants")
        if winner is not None and not exp["is_significant"]:
            errors.append(f"Experiment {exp_id} has a winner without significance")

        if exp["status_message"] not in STATUS_MESSAGES:
            errors.append(
                f"Experiment {exp_id} invalid status: {exp['status_message']}"
            )

    return errors


def main() -> None:
    parser = argparse.ArgumentParser(description="Validate exported analytics data")
    parser.add_argument(
        "--data",
        default="src/dashboard/data.json",
        help="Path to exported dashboard JSON",
    )
    opts = parser.parse_args()

    path = Path(opts.data)
    if not path.exists():
        print(f"FAIL: {opts.data} not found. Run 'python -m src.analysis.export' first.")
        sys.exit(1)

    data = json.loads(path.read_text())
    errors = validate(data)

    if errors:
        print(f"FAIL: {len(errors)} validation error(s):")
        for e in errors:
            print(f"  - {e}")
        sys.exit(1)

    print("PASS: Analytics integrity validated")
    for item in data["cohorts"]:
        print(f"  Cohort {item['cohort']['name']}: {item['metrics']['sessions']:,} sessions")
    for exp in data["experiments"]:
        print(
            f"  Experiment {exp['experiment_id']}: {exp['status_message']} "
            f"({exp['confidence_level']:.1f}% confidence)"
        )


if __name__ == "__main__":
    main()
