"""Runtime settings for the analytics service.

Defaults match what the dashboard expects; every field can be overridden
with an ANALYTICS_<FIELD> environment variable through `from_env`.
"""

import os
from dataclasses import dataclass, fields


@dataclass(frozen=True)
class AnalyticsConfig:
    # Result cache
    cache_max_entries: int = 200
    results_ttl_s: float = 30.0      # experiment results need to stay fresh
    cohort_ttl_s: float = 60.0
    cache_workers: int = 8

    # Store queries
    query_timeout_s: float = 30.0
    default_window_days: int = 30
    top_pages_limit: int = 10

    # Sample-size guidance
    minimum_detectable_effect: float = 0.10   # 10% relative lift
    fallback_baseline_rate: float = 0.05

    @classmethod
    def from_env(cls, environ: dict | None = None) -> "AnalyticsConfig":
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = environ.get(f"ANALYTICS_{f.name.upper()}")
            if raw is None:
                continue
            try:
                overrides[f.name] = int(raw) if f.type in (int, "int") else float(raw)
            except ValueError as exc:
                raise ValueError(f"Invalid ANALYTICS_{f.name.upper()}={raw!r}") from exc
        return cls(**overrides)
