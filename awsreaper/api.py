"""Action endpoint for the signed links in reaper notifications."""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

from . import __version__
from .errors import InvalidToken, NotFound, ProviderError, UnsupportedAction
from .token import untokenize

logger = logging.getLogger(__name__)


class ActionResponse(BaseModel):
    ok: bool
    action: str
    region: str
    id: str
    message: str
    state: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    registered: int
    scheduled: int


def _action_matches(requested: str, action: str) -> bool:
    # ignore links are named delay_<duration>
    return requested == action or requested.startswith(f"{action}_")


def create_app(reaper: Any) -> FastAPI:
    """
    Build the action endpoint for a reaper.

    GET /?action=<name>&token=<token> verifies the token and performs its
    action on the registered resource.
    """
    http = reaper.config.http
    app = FastAPI(
        title="AWS Reaper",
        description="Owner actions for resources the reaper is going to reap",
        version=__version__,
    )

    @app.get("/health", response_model=HealthResponse)
    def health():
        """Health check endpoint."""
        return HealthResponse(status="ok", version=__version__,
                              registered=len(reaper.registry), scheduled=len(reaper.schedules))

    @app.get("/", response_model=ActionResponse)
    def action_endpoint(request: Request):
        """Perform the action named by a signed token."""
        params: Dict[str, str] = dict(request.query_params)
        requested = params.get(http.action_param, "")
        text = params.get(http.token_param, "")
        if not text:
            raise HTTPException(status_code=400, detail="Missing token")

        try:
            action_token = untokenize(http.token_secret, text)
        except InvalidToken as e:
            logger.warning(f"Rejected token: {e}")
            raise HTTPException(status_code=400, detail=f"Invalid token: {e}")

        action = action_token.action.value
        if requested and not _action_matches(requested, action):
            raise HTTPException(status_code=400, detail=f"Action {requested} does not match token")

        try:
            resource = reaper.execute(action_token)
        except NotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except UnsupportedAction as e:
            raise HTTPException(status_code=409, detail=str(e))
        except ProviderError as e:
            raise HTTPException(status_code=502, detail=str(e))
        except (ValueError, KeyError) as e:
            raise HTTPException(status_code=400, detail=f"Bad action parameters: {e}")

        logger.info(f"Performed {action} on {resource.description_tiny()} in {resource.region}")
        return ActionResponse(
            ok=True,
            action=action,
            region=action_token.region,
            id=action_token.id,
            message=f"{action} {resource.description_short()} succeeded",
            state=resource.reaper_state.serialize(),
        )

    return app
