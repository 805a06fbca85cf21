"""Simulation engine that generates realistic browsing sessions.

Each simulated session follows the same shape:
  page_view(s) -> click(s) / scroll(s) / form interaction -> checkout

At each stage the visitor may stop based on configured probabilities.
Sessions bucketed into a non-control variant of an experiment get a
configurable uplift to their checkout probability.
All randomness is seeded for full reproducibility.
"""

import hashlib
import random
from datetime import datetime, timedelta, timezone

from src.ab.assignment import assign_all
from src.ab.experiment import Experiment, GoalType
from src.collector.schemas import DeviceType, Event, EventType
from src.simulator.config import SimulationConfig


def generate_events(
    config: SimulationConfig | None = None,
    experiments: list[Experiment] | None = None,
    end_time: datetime | None = None,
) -> list[Event]:
    """Generate a full set of simulated interaction events.

    Every session is deterministically assigned to a variant of each running
    experiment on the site, and every event it emits carries those
    assignments. Returns a list of Event objects sorted by timestamp.
    """
    if config is None:
        config = SimulationConfig()
    experiments = [e for e in experiments or [] if e.site_id == config.site_id]

    rng = random.Random(config.seed)
    all_events: list[Event] = []
    # End the simulation window 1 day before now to avoid future timestamps
    # (a session can add ~1 hour of in-session time)
    if end_time is None:
        end_time = datetime.now(timezone.utc) - timedelta(days=1)
    start_time = end_time - timedelta(days=config.days)

    for i in range(config.num_sessions):
        session_id = f"sess_{i:06d}"
        all_events.extend(
            _simulate_session(session_id, start_time, config, rng, experiments)
        )

    all_events.sort(key=lambda e: (e.timestamp, e.event_id))
    return all_events


def _simulate_session(
    session_id: str,
    start_time: datetime,
    config: SimulationConfig,
    rng: random.Random,
    experiments: list[Experiment],
) -> list[Event]:
    """Simulate a single browsing session."""
    events: list[Event] = []
    current_time = start_time + timedelta(seconds=rng.randint(0, config.days * 86400))

    assignments = assign_all(experiments, session_id)
    context = {
        "site_id": config.site_id,
        "session_id": session_id,
        "device_type": DeviceType(rng.choices(config.devices, weights=config.device_weights, k=1)[0]),
        "referrer": rng.choice(config.referrers),
        "user_language": rng.choice(config.languages),
        "user_agent": rng.choice(config.user_agents),
        "experiment_ids": list(assignments.keys()),
        "variant_ids": list(assignments.values()),
    }
    context["viewport_width"] = {"desktop": 1440, "mobile": 390, "tablet": 820}[context["device_type"].value]

    def emit(event_type: EventType, page: str, **extra) -> None:
        nonlocal current_time
        events.append(_make_event(rng, event_type, current_time, page, context, **extra))
        current_time += timedelta(seconds=rng.randint(2, 90))

    # --- Page views ---
    pages = [rng.choice(config.pages) for _ in range(rng.randint(config.min_page_views, config.max_page_views))]
    for page in pages:
        emit(EventType.PAGE_VIEW, page, load_time=round(rng.uniform(0.2, 4.0), 2))

    # --- Clicks ---
    if rng.random() < config.prob_click:
        for _ in range(rng.randint(1, config.max_clicks)):
            emit(EventType.CLICK, rng.choice(pages), is_dead_click=rng.random() < config.prob_rage_click)

    # --- Scrolls ---
    if rng.random() < config.prob_scroll:
        emit(EventType.SCROLL, rng.choice(pages), scroll_depth=round(rng.uniform(10, 100), 1))

    # --- Form interaction ---
    if rng.random() < config.prob_form:
        emit(EventType.FORM_INTERACTION, "/cart")

    # --- Checkout (funnel gate) ---
    # Non-control variants get an uplift to simulate a real experiment effect
    checkout_prob = config.prob_checkout
    if any(vid != "control" for vid in assignments.values()):
        checkout_prob = min(checkout_prob + config.treatment_uplift, 1.0)

    if rng.random() >= checkout_prob:
        return events

    order_value = rng.choices(config.order_values, weights=config.order_weights, k=1)[0]
    for experiment in experiments:
        variant_id = assignments.get(experiment.experiment_id)
        if variant_id is None:
            continue
        emit(EventType.CONVERSION, "/checkout", data={"event_name": experiment.goal_event})
        for goal in experiment.goals:
            emit(
                EventType.EXPERIMENT_GOAL, "/checkout",
                data={
                    "experiment_id": experiment.experiment_id,
                    "variant_id": variant_id,
                    "goal_id": goal.id,
                    "goal_type": goal.type.value,
                    "revenue_value": order_value if goal.type is GoalType.REVENUE else 0,
                },
            )

    return events


def _make_event(
    rng: random.Random,
    event_type: EventType,
    timestamp: datetime,
    page_path: str,
    context: dict,
    **extra,
) -> Event:
    # Deterministic event ID derived from seeded RNG
    event_id = hashlib.md5(rng.randbytes(16)).hexdigest()
    return Event(
        event_id=event_id,
        event_type=event_type,
        timestamp=timestamp,
        page_path=page_path,
        **context,
        **extra,
    )
