"""Simulation parameters for realistic visitor behavior.

These numbers model a small e-commerce site:
  landing page -> browsing (clicks, scrolls, forms) -> checkout

Rates are calibrated to produce enough checkouts for the experiment
analysis to reach significance at the default number of sessions.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class SimulationConfig:
    num_sessions: int = 4000
    site_id: str = "site_demo"
    # Number of days the simulation spans
    days: int = 14
    # Random seed for reproducibility
    seed: int = 42

    # Session behaviour
    prob_click: float = 0.60         # sessions with at least one click
    prob_scroll: float = 0.75
    prob_form: float = 0.20
    prob_rage_click: float = 0.05    # a click that hit a dead element
    prob_checkout: float = 0.10      # baseline checkout rate
    treatment_uplift: float = 0.05   # +5pp checkout rate for non-control variants

    min_page_views: int = 1
    max_page_views: int = 6
    max_clicks: int = 5

    # Pages visitors can land on and browse
    pages: tuple[str, ...] = (
        "/",
        "/products",
        "/products/shoes",
        "/products/bags",
        "/pricing",
        "/blog",
        "/cart",
    )

    devices: tuple[str, ...] = ("desktop", "mobile", "tablet")
    device_weights: tuple[float, ...] = (0.5, 0.4, 0.1)

    referrers: tuple[str, ...] = (
        "",
        "https://www.google.com/",
        "https://news.ycombinator.com/",
        "https://twitter.com/",
    )
    languages: tuple[str, ...] = ("en-US", "en-GB", "de-DE", "fr-FR")
    user_agents: tuple[str, ...] = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/126.0",
        "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Safari/604.1",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) Firefox/127.0",
    )

    # Order values for revenue goals
    order_values: tuple[float, ...] = (19.0, 49.0, 129.0)
    order_weights: tuple[float, ...] = (0.6, 0.3, 0.1)
