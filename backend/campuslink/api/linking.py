"""API endpoints for linking a Penn State account."""

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel, Field

from ..linking import LinkingService
from ..logging import get_logger

logger = get_logger("api.linking")

router = APIRouter(prefix="/linking", tags=["linking"])


# --- Request/Response Models ---

class InitiateLinkRequest(BaseModel):
    """Start linking with Penn State credentials."""
    user_id: str = Field(..., min_length=1)
    username: str = Field(default="", description="Penn State email address")
    password: str = Field(default="", description="Penn State password")


class VerifyRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class LinkingResponse(BaseModel):
    """Envelope shared by every linking endpoint."""
    success: bool
    message: str
    data: Optional[dict[str, Any]] = None
    timestamp: str


def _respond(success: bool, message: str, data: Optional[dict] = None) -> LinkingResponse:
    return LinkingResponse(
        success=success,
        message=message,
        data=data,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


def _respond_result(result: Any, response: Response) -> LinkingResponse:
    """Envelope for a service result; unsuccessful results carry their error's status."""
    error = result.error()
    if error is None:
        return _respond(True, result.message, result.to_dict())
    response.status_code = error.status_code
    return _respond(False, error.public_message, result.to_dict())


def get_linking_service(request: Request) -> LinkingService:
    return request.app.state.linking


# --- Endpoints ---

@router.post("/initiate", response_model=LinkingResponse)
async def initiate_linking(
    request: InitiateLinkRequest,
    response: Response,
    service: LinkingService = Depends(get_linking_service),
):
    """
    Submit Penn State credentials.

    Returns one of:
    - ``linked``: no MFA was required, credentials are stored
    - ``challenge``: approve the push in Microsoft Authenticator (entering
      ``match_code`` if given), then poll ``GET /linking/approval``
    - ``failed`` (401): the login was rejected; ``reason`` says why
    """
    result = await service.initiate(request.user_id, request.username, request.password)
    return _respond_result(result, response)


@router.get("/approval", response_model=LinkingResponse)
async def check_approval(
    response: Response,
    session_id: str = Query(..., min_length=1),
    user_id: str = Query(..., min_length=1),
    service: LinkingService = Depends(get_linking_service),
):
    """Poll a pending MFA approval. Each call waits at most a few seconds.

    Denied approvals answer 401; unknown or expired sessions answer 404.
    """
    result = await service.check_approval(user_id, session_id)
    return _respond_result(result, response)


@router.get("/status", response_model=LinkingResponse)
async def get_link_status(
    user_id: str = Query(..., min_length=1),
    service: LinkingService = Depends(get_linking_service),
):
    """Get the user's link status."""
    view = await service.get_status(user_id)
    return _respond(True, "Link status retrieved", view.to_dict())


@router.delete("/unlink", response_model=LinkingResponse)
async def unlink_account(
    user_id: str = Query(..., min_length=1),
    service: LinkingService = Depends(get_linking_service),
):
    """Remove the linked account and its stored credentials."""
    unlinked_at = await service.unlink(user_id)
    logger.info(f"Account unlinked for user {user_id}")
    return _respond(True, "Penn State account unlinked", {"unlinked_at": unlinked_at.isoformat()})


@router.post("/verify", response_model=LinkingResponse)
async def verify_credentials(
    request: VerifyRequest,
    service: LinkingService = Depends(get_linking_service),
):
    """Check that the stored credentials can still be decrypted."""
    usable = await service.verify_stored_credentials(request.user_id)
    message = "Stored credentials are valid" if usable else "Stored credentials are missing or unusable"
    return _respond(usable, message, {"valid": usable})
