"""
Tag helpers: owner extraction and the schedule tag format.
"""

import re
from email.utils import parseaddr
from typing import Dict, Optional, Tuple

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_USERNAME = re.compile(r"^[A-Za-z0-9._+-]+$")


def _as_address(value: str) -> Optional[str]:
    _, address = parseaddr(value.strip())
    if address and _EMAIL.match(address):
        return address.lower()
    return None


def owner_address(tags: Dict[str, str], owner_tag: str = "Owner",
                  default_email_host: str = "", default_owner: str = "") -> Optional[str]:
    """
    Work out who owns a resource.

    Args:
        tags: Resource tags
        owner_tag: Tag holding the owner
        default_email_host: Host appended to bare user names
        default_owner: Fallback address for resources without a usable owner tag

    Returns:
        Normalized email address, or None if the resource is unowned
    """
    value = tags.get(owner_tag, "")
    if value:
        address = _as_address(value)
        if address:
            return address
        if default_email_host and _USERNAME.match(value.strip()):
            return _as_address(f"{value.strip()}@{default_email_host}")

    if default_owner:
        return _as_address(default_owner)

    return None


def parse_schedule_tag(value: str) -> Optional[Tuple[str, str]]:
    """
    Parse a "<scale down cron>|<scale up cron>" schedule tag.

    Returns:
        (scale_down, scale_up) or None if the value is not a schedule
    """
    if not value or "|" not in value:
        return None
    down, up = value.split("|", 1)
    down, up = down.strip(), up.strip()
    if not down or not up:
        return None
    return down, up


def format_schedule_tag(scale_down: str, scale_up: str) -> str:
    return f"{scale_down.strip()}|{scale_up.strip()}"
