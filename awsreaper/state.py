"""
Reaper lifecycle state machine.

A reapable resource moves FIRST -> SECOND -> THIRD -> FINAL, one step each
time it still matches the filters after its current stage has run out. An
owner can snooze it into IGNORE; when the snooze runs out it starts again at
FIRST.

States are stored on the resource as a tag of the form

    NAME|entered|until            e.g. FIRST|1700000000|1700003600
    IGNORE|entered|until|PRIOR    owner-requested ignore, PRIOR = state before it

where the timestamps are Unix seconds.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from .errors import MalformedState

logger = logging.getLogger(__name__)


class StateEnum(Enum):
    """Lifecycle stages."""
    IGNORE = "IGNORE"
    FIRST = "FIRST"
    SECOND = "SECOND"
    THIRD = "THIRD"
    FINAL = "FINAL"

    def __str__(self) -> str:
        return self.value


_NEXT = {
    StateEnum.IGNORE: StateEnum.FIRST,
    StateEnum.FIRST: StateEnum.SECOND,
    StateEnum.SECOND: StateEnum.THIRD,
    StateEnum.THIRD: StateEnum.FINAL,
}


@dataclass(frozen=True)
class StateDurations:
    """How long a resource stays in each notifying stage."""
    first: timedelta = timedelta(days=3)
    second: timedelta = timedelta(days=2)
    third: timedelta = timedelta(days=1)

    def for_state(self, state: StateEnum) -> timedelta:
        if state is StateEnum.FIRST:
            return self.first
        if state is StateEnum.SECOND:
            return self.second
        if state is StateEnum.THIRD:
            return self.third
        return timedelta(0)


def utcnow() -> datetime:
    """Current UTC time truncated to whole seconds."""
    return truncate(datetime.now(timezone.utc))


def truncate(moment: datetime) -> datetime:
    """Drop sub-second precision and make the datetime UTC-aware."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).replace(microsecond=0)


def _from_timestamp(text: str) -> datetime:
    return datetime.fromtimestamp(int(text), tz=timezone.utc)


@dataclass
class State:
    """Lifecycle state of one resource."""
    state: StateEnum
    entered: datetime
    until: datetime
    resume_from: Optional[StateEnum] = None
    # set when the reap loop or an owner action changed the state this cycle
    updated: bool = field(default=False, compare=False)

    def __post_init__(self):
        self.entered = truncate(self.entered)
        self.until = truncate(self.until)

    @classmethod
    def new(cls, now: Optional[datetime] = None, durations: Optional[StateDurations] = None) -> "State":
        """A fresh FIRST state ending after the configured first duration."""
        now = truncate(now or utcnow())
        durations = durations or StateDurations()
        return cls(state=StateEnum.FIRST, entered=now, until=now + durations.first)

    @property
    def owner_ignored(self) -> bool:
        """True when the IGNORE state was requested by an owner action."""
        return self.state is StateEnum.IGNORE and self.resume_from is not None

    def advance_if_due(self, now: datetime, durations: StateDurations) -> bool:
        """
        Move to the next stage if the current one has run out.

        Args:
            now: Current time
            durations: Configured stage durations

        Returns:
            True if the state changed
        """
        now = truncate(now)
        if self.state is StateEnum.FINAL or now <= self.until:
            return False

        next_state = _NEXT[self.state]
        self.state = next_state
        self.entered = now
        self.until = now + durations.for_state(next_state)
        self.resume_from = None
        self.updated = True
        return True

    def set_ignore(self, duration: timedelta, now: Optional[datetime] = None) -> None:
        """
        Snooze the resource for the given duration.

        Once the snooze runs out, escalation restarts at FIRST rather than at
        the stage it was snoozed from.
        """
        now = truncate(now or utcnow())
        if self.state is StateEnum.IGNORE:
            # a plain IGNORE tag carries no prior stage
            prior = self.resume_from or StateEnum.FIRST
        else:
            prior = self.state
        self.resume_from = prior
        self.state = StateEnum.IGNORE
        self.entered = now
        self.until = now + duration
        self.updated = True

    def serialize(self) -> str:
        parts = [
            self.state.value,
            str(int(self.entered.timestamp())),
            str(int(self.until.timestamp())),
        ]
        if self.state is StateEnum.IGNORE and self.resume_from is not None:
            parts.append(self.resume_from.value)
        return "|".join(parts)

    def __str__(self) -> str:
        return self.serialize()

    @classmethod
    def deserialize(cls, text: str) -> "State":
        """
        Parse a serialized state.

        Raises:
            MalformedState: If the text does not follow the state grammar
        """
        if not isinstance(text, str):
            raise MalformedState(f"State must be a string, got {type(text).__name__}")

        parts = text.strip().split("|")
        if len(parts) not in (3, 4):
            raise MalformedState(f"Malformed state: {text!r}")

        try:
            state = StateEnum(parts[0])
            entered = _from_timestamp(parts[1])
            until = _from_timestamp(parts[2])
        except (ValueError, OverflowError, OSError) as e:
            raise MalformedState(f"Malformed state {text!r}: {e}") from e

        resume_from = None
        if len(parts) == 4:
            if state is not StateEnum.IGNORE:
                raise MalformedState(f"Only IGNORE states carry a prior state: {text!r}")
            try:
                resume_from = StateEnum(parts[3])
            except ValueError as e:
                raise MalformedState(f"Malformed state {text!r}: {e}") from e
            if resume_from is StateEnum.IGNORE:
                raise MalformedState(f"IGNORE cannot resume from IGNORE: {text!r}")

        return cls(state=state, entered=entered, until=until, resume_from=resume_from)

    @classmethod
    def from_tag(cls, text: str, now: Optional[datetime] = None,
                 durations: Optional[StateDurations] = None) -> "State":
        """
        Parse a state tag, falling back to a fresh state if it is malformed.

        The fresh state is marked updated so the tagger replaces the bad tag.
        """
        try:
            return cls.deserialize(text)
        except MalformedState as e:
            logger.warning(f"Ignoring saved state, starting fresh: {e}")
            state = cls.new(now, durations)
            state.updated = True
            return state

    def copy(self) -> "State":
        return State(
            state=self.state,
            entered=self.entered,
            until=self.until,
            resume_from=self.resume_from,
            updated=self.updated,
        )
