"""
Five-field cron expressions for resource schedules.

    minute hour day-of-month month day-of-week

Each field accepts "*", numbers, ranges ("1-5"), steps ("*/15", "0-30/10")
and comma-separated lists of those. Day of week runs 0-6 from Sunday, 7 is
also Sunday. As in cron, when both day fields are restricted a day matches
if either does.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, Tuple

MACROS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

# (name, low, high)
_FIELDS: Tuple[Tuple[str, int, int], ...] = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day of month", 1, 31),
    ("month", 1, 12),
    ("day of week", 0, 7),
)


def _parse_field(text: str, name: str, low: int, high: int) -> FrozenSet[int]:
    values = set()
    for part in text.split(","):
        if not part:
            raise ValueError(f"Empty {name} entry in {text!r}")

        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            step = int(step_text)
            if step < 1:
                raise ValueError(f"Step must be positive in {name}: {text!r}")

        if part == "*":
            start, end = low, high
        elif "-" in part:
            start_text, end_text = part.split("-", 1)
            start, end = int(start_text), int(end_text)
        else:
            start = int(part)
            end = high if step > 1 else start

        if start < low or end > high or start > end:
            raise ValueError(f"{name} out of range {low}-{high}: {text!r}")
        values.update(range(start, end + 1, step))
    return frozenset(values)


@dataclass(frozen=True)
class CronExpression:
    expression: str
    minutes: FrozenSet[int]
    hours: FrozenSet[int]
    days: FrozenSet[int]
    months: FrozenSet[int]
    weekdays: FrozenSet[int]
    day_restricted: bool
    weekday_restricted: bool

    @classmethod
    def parse(cls, expression: str) -> "CronExpression":
        """
        Parse a cron expression or macro.

        Raises:
            ValueError: If the expression is not valid
        """
        text = MACROS.get(expression.strip().lower(), expression.strip())
        fields = text.split()
        if len(fields) != 5:
            raise ValueError(f"Cron expression needs 5 fields: {expression!r}")

        parsed = [_parse_field(f, *spec) for f, spec in zip(fields, _FIELDS)]
        weekdays = frozenset(0 if d == 7 else d for d in parsed[4])
        return cls(
            expression=expression,
            minutes=parsed[0],
            hours=parsed[1],
            days=parsed[2],
            months=parsed[3],
            weekdays=weekdays,
            day_restricted=not fields[2].startswith("*"),
            weekday_restricted=not fields[4].startswith("*"),
        )

    def matches(self, moment: datetime) -> bool:
        """True if the expression fires in the minute containing moment."""
        if moment.minute not in self.minutes or moment.hour not in self.hours:
            return False
        if moment.month not in self.months:
            return False

        # isoweekday: Monday=1 .. Sunday=7
        weekday = moment.isoweekday() % 7
        day_ok = moment.day in self.days
        weekday_ok = weekday in self.weekdays
        if self.day_restricted and self.weekday_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok

    def __str__(self) -> str:
        return self.expression
