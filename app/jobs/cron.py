"""
Five-field cron expressions.

Parsing is local; next fire times come from arq's cron matcher so the
scheduler and an arq worker agree on when a job is due.
"""

from dataclasses import dataclass
from datetime import datetime

from arq.cron import next_cron

FIELD_RANGES = {
    "minute": (0, 59),
    "hour": (0, 23),
    "day": (1, 31),
    "month": (1, 12),
    "weekday": (0, 7),
}


class InvalidCronError(ValueError):
    """Raised for malformed cron expressions."""


def _parse_field(value: str, name: str) -> set[int] | None:
    low, high = FIELD_RANGES[name]
    if value == "*":
        return None

    values: set[int] = set()
    for part in value.split(","):
        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            if not step_text.isdigit() or int(step_text) == 0:
                raise InvalidCronError(f"Invalid step '{step_text}' in {name} field")
            step = int(step_text)

        if part == "*":
            start, end = low, high
        elif "-" in part:
            start_text, end_text = part.split("-", 1)
            if not (start_text.isdigit() and end_text.isdigit()):
                raise InvalidCronError(f"Invalid range '{part}' in {name} field")
            start, end = int(start_text), int(end_text)
        elif part.isdigit():
            start = int(part)
            end = high if step > 1 else start
        else:
            raise InvalidCronError(f"Invalid value '{part}' in {name} field")

        if start < low or end > high or start > end:
            raise InvalidCronError(f"Value out of range in {name} field: {part}")
        values.update(range(start, end + 1, step))

    return values


@dataclass(frozen=True, slots=True)
class CronSchedule:
    """
    Parsed cron expression: ``minute hour day month weekday``.

    Weekdays use cron numbering (0 or 7 = Sunday) and are converted to
    Python's Monday = 0 numbering. When both day and weekday are restricted,
    a time must match both.
    """

    expression: str
    minute: frozenset[int] | None = None
    hour: frozenset[int] | None = None
    day: frozenset[int] | None = None
    month: frozenset[int] | None = None
    weekday: frozenset[int] | None = None

    @classmethod
    def parse(cls, expression: str) -> "CronSchedule":
        fields = expression.split()
        if len(fields) != 5:
            raise InvalidCronError(f"Expected 5 cron fields, got {len(fields)}: '{expression}'")

        parsed = {}
        for name, value in zip(FIELD_RANGES, fields):
            values = _parse_field(value, name)
            if values is not None and name == "weekday":
                values = {(d - 1) % 7 for d in values}
            parsed[name] = frozenset(values) if values is not None else None

        return cls(expression=expression, **parsed)

    def next_after(self, dt: datetime) -> datetime:
        """First fire time strictly after ``dt``, in ``dt``'s time zone."""
        return next_cron(
            dt.replace(microsecond=0),
            month=set(self.month) if self.month is not None else None,
            day=set(self.day) if self.day is not None else None,
            weekday=set(self.weekday) if self.weekday is not None else None,
            hour=set(self.hour) if self.hour is not None else None,
            minute=set(self.minute) if self.minute is not None else None,
            second=0,
            microsecond=0,
        )

    def __str__(self) -> str:
        return self.expression
