"""
State file persistence.

One line per resource, "region,id,serializedState", e.g.

    us-east-1,i-999,FIRST|1700000000|1700003600
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, Tuple

from .errors import MalformedState
from .reapable import Reapable
from .state import State

logger = logging.getLogger(__name__)

SavedStates = Dict[Tuple[str, str], State]


def format_line(resource: Reapable) -> str:
    return f"{resource.region},{resource.id},{resource.reaper_state.serialize()}"


def save_state(path: str, resources: Iterable[Reapable]) -> bool:
    """
    Write the lifecycle state of every resource.

    A file that cannot be written is logged; the reap cycle goes on.

    Returns:
        True if the file was written
    """
    lines = [format_line(resource) for resource in resources]
    try:
        with open(path, "w", encoding="utf-8") as f:
            for line in lines:
                f.write(line + "\n")
    except OSError as e:
        logger.error(f"Could not write state file {path}: {e}")
        return False
    logger.info(f"Saved {len(lines)} states to {path}")
    return True


def parse_line(line: str) -> Tuple[str, str, State]:
    """
    Parse one state file line.

    Raises:
        MalformedState: If the line does not have exactly three fields or the state is invalid
    """
    fields = line.strip().split(",")
    if len(fields) != 3:
        raise MalformedState(f"Expected 3 fields, got {len(fields)}: {line!r}")
    region, resource_id, text = fields
    if not region or not resource_id:
        raise MalformedState(f"Missing region or id: {line!r}")
    return region, resource_id, State.deserialize(text)


def load_state(path: str) -> SavedStates:
    """
    Read saved states keyed by (region, id).

    Malformed lines are skipped with a warning. A missing file yields an
    empty map.
    """
    states: SavedStates = {}
    state_file = Path(path)
    if not state_file.exists():
        logger.warning(f"State file {path} does not exist")
        return states

    with open(state_file, "r", encoding="utf-8") as f:
        for number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                region, resource_id, state = parse_line(line)
            except MalformedState as e:
                logger.warning(f"Skipping line {number} of {path}: {e}")
                continue
            states[(region, resource_id)] = state

    logger.info(f"Loaded {len(states)} states from {path}")
    return states
