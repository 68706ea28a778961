"""
Signed action tokens.

Notification links carry a token naming an action and the resource it
applies to. Tokens are signed with a shared secret (HMAC-SHA256) so the
action endpoint can trust them without any server-side session. There is
no expiry: the lifecycle state machine is the timer that matters.

Token format: base64url(JSON payload) "." hex(HMAC over the base64 text).
"""

import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Dict, Optional
from urllib.parse import urlencode

from .durations import format_duration, parse_duration
from .errors import InvalidToken


class JobType(Enum):
    """Actions an owner can trigger from a link."""
    TERMINATE = "terminate"
    STOP = "stop"
    FORCE_STOP = "forcestop"
    WHITELIST = "whitelist"
    DELAY = "delay"
    SCHEDULE = "schedule"


@dataclass
class ActionToken:
    """An action bound to one resource."""
    action: JobType
    region: str
    id: str
    params: Dict[str, str] = field(default_factory=dict)
    issued_at: int = 0

    @property
    def duration(self) -> timedelta:
        """Ignore duration of a DELAY token."""
        return parse_duration(self.params["duration"])

    @property
    def scale_down(self) -> str:
        return self.params["scale_down"]

    @property
    def scale_up(self) -> str:
        return self.params["scale_up"]


def new_terminate_job(region: str, resource_id: str) -> ActionToken:
    return ActionToken(JobType.TERMINATE, region, resource_id)


def new_stop_job(region: str, resource_id: str) -> ActionToken:
    return ActionToken(JobType.STOP, region, resource_id)


def new_force_stop_job(region: str, resource_id: str) -> ActionToken:
    return ActionToken(JobType.FORCE_STOP, region, resource_id)


def new_whitelist_job(region: str, resource_id: str) -> ActionToken:
    return ActionToken(JobType.WHITELIST, region, resource_id)


def new_delay_job(region: str, resource_id: str, duration: timedelta) -> ActionToken:
    return ActionToken(JobType.DELAY, region, resource_id, {"duration": format_duration(duration)})


def new_schedule_job(region: str, resource_id: str, scale_down: str, scale_up: str) -> ActionToken:
    return ActionToken(JobType.SCHEDULE, region, resource_id,
                       {"scale_down": scale_down, "scale_up": scale_up})


def _sign(secret: str, payload: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def tokenize(secret: str, token: ActionToken) -> str:
    """
    Serialize and sign a token.

    Args:
        secret: Shared signing secret
        token: Token to sign; issued_at is filled in if unset

    Returns:
        Opaque token string safe to put in a URL
    """
    if not secret:
        raise ValueError("A token secret is required")

    issued_at = token.issued_at or int(time.time())
    body = json.dumps(
        {
            "action": token.action.value,
            "region": token.region,
            "id": token.id,
            "params": token.params,
            "issued_at": issued_at,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    payload = base64.urlsafe_b64encode(body.encode("utf-8")).decode("ascii").rstrip("=")
    return f"{payload}.{_sign(secret, payload)}"


def untokenize(secret: str, text: str) -> ActionToken:
    """
    Verify and decode a token.

    Raises:
        InvalidToken: If the signature does not match or the payload is not a token
    """
    if not secret:
        raise InvalidToken("No token secret configured")
    if not isinstance(text, str) or text.count(".") != 1:
        raise InvalidToken("Malformed token")

    payload, signature = text.split(".")
    expected = _sign(secret, payload)
    try:
        valid = hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))
    except (TypeError, UnicodeEncodeError):
        valid = False
    if not valid:
        raise InvalidToken("Token signature does not match")

    try:
        padded = payload + "=" * (-len(payload) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
        params = data.get("params") or {}
        if not isinstance(params, dict):
            raise ValueError("params must be a mapping")
        return ActionToken(
            action=JobType(data["action"]),
            region=str(data["region"]),
            id=str(data["id"]),
            params={str(k): str(v) for k, v in params.items()},
            issued_at=int(data.get("issued_at", 0)),
        )
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError, AttributeError) as e:
        raise InvalidToken(f"Token payload could not be decoded: {e}") from e


def make_url(api_url: str, action: str, token: str,
             action_param: str = "action", token_param: str = "token") -> str:
    """Build the link the owner clicks."""
    query = urlencode({action_param: action, token_param: token})
    if api_url.endswith("/"):
        return f"{api_url}?{query}"
    return f"{api_url}/?{query}"


def make_link(action: JobType, region: str, resource_id: str, params: Optional[Dict[str, str]],
              secret: str, api_url: str, action_param: str = "action",
              token_param: str = "token") -> str:
    """
    Create a signed action link for a resource.

    Args:
        action: Action to perform
        region: Resource region
        resource_id: Resource id
        params: Action parameters (duration, schedules)
        secret: Token secret
        api_url: Base URL of the action endpoint

    Returns:
        URL with the action name and signed token as query parameters
    """
    token = tokenize(secret, ActionToken(action, region, resource_id, dict(params or {})))
    name = action.value
    if action is JobType.DELAY and params and "duration" in params:
        name = f"delay_{params['duration']}"
    return make_url(api_url, name, token, action_param, token_param)


def terminate_link(region: str, resource_id: str, secret: str, api_url: str, **kw) -> str:
    return make_link(JobType.TERMINATE, region, resource_id, None, secret, api_url, **kw)


def stop_link(region: str, resource_id: str, secret: str, api_url: str, **kw) -> str:
    return make_link(JobType.STOP, region, resource_id, None, secret, api_url, **kw)


def force_stop_link(region: str, resource_id: str, secret: str, api_url: str, **kw) -> str:
    return make_link(JobType.FORCE_STOP, region, resource_id, None, secret, api_url, **kw)


def whitelist_link(region: str, resource_id: str, secret: str, api_url: str, **kw) -> str:
    return make_link(JobType.WHITELIST, region, resource_id, None, secret, api_url, **kw)


def ignore_link(region: str, resource_id: str, secret: str, api_url: str,
                duration: timedelta, **kw) -> str:
    params = {"duration": format_duration(duration)}
    return make_link(JobType.DELAY, region, resource_id, params, secret, api_url, **kw)


def schedule_link(region: str, resource_id: str, secret: str, api_url: str,
                  scale_down: str, scale_up: str, **kw) -> str:
    params = {"scale_down": scale_down, "scale_up": scale_up}
    return make_link(JobType.SCHEDULE, region, resource_id, params, secret, api_url, **kw)
