"""Whitelist of rule fields and the event columns they filter on.

This table is code-owned. A rule naming a field that is not listed here is
unsupported: the compiler skips it instead of failing the cohort.
"""

from enum import Enum


class ValueType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"


class CohortField(Enum):
    DEVICE_TYPE = ("device_type", "device_type", ValueType.STRING)
    COUNTRY = ("country", "user_language", ValueType.STRING)
    REFERRER = ("referrer", "referrer", ValueType.STRING)
    BROWSER = ("browser", "user_agent", ValueType.STRING)
    PAGE_PATH = ("page_path", "page_path", ValueType.STRING)
    HAS_RAGE_CLICKS = ("has_rage_clicks", "is_dead_click", ValueType.BOOLEAN)
    SCROLL_DEPTH = ("scroll_depth", "scroll_depth", ValueType.NUMBER)
    LOAD_TIME = ("load_time", "load_time", ValueType.NUMBER)
    VIEWPORT_WIDTH = ("viewport_width", "viewport_width", ValueType.NUMBER)

    def __init__(self, field_name: str, store_column: str, value_type: ValueType):
        self.field_name = field_name
        self.store_column = store_column
        self.value_type = value_type

    @classmethod
    def lookup(cls, name: str) -> "CohortField | None":
        return _BY_NAME.get(name)


_BY_NAME = {f.field_name: f for f in CohortField}
