"""
DateTime tool. The model has no clock, this tool does.

The poet never knows what year it is; the chat assistant can ask.
"""

import logging
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

# Common timezone offsets in hours (no tz database needed)
TIMEZONE_OFFSETS = {
    "utc": 0, "gmt": 0,
    "est": -5, "edt": -4,
    "cst": -6, "cdt": -5,
    "mst": -7, "mdt": -6,
    "pst": -8, "pdt": -7,
    "cet": 1, "cest": 2,
    "eet": 2, "eest": 3,
    "ist": 5.5, "jst": 9, "kst": 9,
    "aest": 10, "aedt": 11,
    "new york": -5, "los angeles": -8, "chicago": -6,
    "london": 0, "paris": 1, "berlin": 1, "moscow": 3,
    "mumbai": 5.5, "beijing": 8, "tokyo": 9, "sydney": 10,
}

_FMT = "%H:%M, %A %B %d, %Y"


class DateTimeTool:
    """Current time and date, optionally in a named timezone or city."""

    name = "datetime"
    description = "Current date and time. Optionally name a timezone or city, e.g. 'tokyo' or 'pst'."
    parameters = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Timezone or city (optional)"},
        },
    }
    input_param = "query"

    def __init__(self, local_tz_offset: float = 0.0):
        self.local_offset = local_tz_offset

    def run(self, query: str = "", now: datetime | None = None) -> str:
        now_utc = now or datetime.now(timezone.utc)
        query_lower = query.lower().strip()

        # Longest names first so "cest" wins over "est"
        for tz_name in sorted(TIMEZONE_OFFSETS, key=len, reverse=True):
            if tz_name in query_lower:
                offset = TIMEZONE_OFFSETS[tz_name]
                local = now_utc.astimezone(timezone(timedelta(hours=offset)))
                return f"Current time in {tz_name.upper()}: {local.strftime(_FMT)} (UTC{offset:+.1f})"

        local = now_utc.astimezone(timezone(timedelta(hours=self.local_offset)))
        return "\n".join([
            f"Local time: {local.strftime(_FMT)} (UTC{self.local_offset:+.1f})",
            f"UTC time: {now_utc.strftime(_FMT)}",
            f"Unix timestamp: {int(now_utc.timestamp())}",
        ])
