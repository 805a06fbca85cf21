"""Event schema for interaction events emitted by tracked sites.

Every event belongs to exactly one site and one browser session. The
columns mirror the warehouse `events` table so a validated Event can be
dumped straight into it.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class EventType(str, Enum):
    PAGE_VIEW = "page_view"
    CLICK = "click"
    SCROLL = "scroll"
    FORM_INTERACTION = "form_interaction"
    CONVERSION = "conversion"
    EXPERIMENT_GOAL = "experiment_goal"


class DeviceType(str, Enum):
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"


class Event(BaseModel):
    event_id: str
    site_id: str
    session_id: str
    event_type: EventType
    timestamp: datetime
    page_path: str = ""
    referrer: str = ""
    user_agent: str = ""
    user_language: str = ""
    device_type: DeviceType = DeviceType.DESKTOP
    viewport_width: int = 0
    scroll_depth: float = 0.0
    load_time: float = 0.0
    is_dead_click: bool = False
    # Experiments the session was bucketed into, parallel arrays
    experiment_ids: list[str] = Field(default_factory=list)
    variant_ids: list[str] = Field(default_factory=list)
    # Free-form payload (goal ids, revenue, custom event names)
    data: dict = Field(default_factory=dict)
