"""
Connection Endpoints

Operator view of the messaging session: status, the current pairing QR
payload, and forced re-pairing.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from notifier.api.dependencies import get_challenge_board, get_connection_manager
from notifier.api.middleware.auth import require_api_key
from notifier.core.connection import ChallengeBoard, ConnectionManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connection", tags=["Connection"])


class ConnectionStatusResponse(BaseModel):
    """Connection snapshot."""
    state: str
    connected: bool
    retry_count: int
    reconnect_pending: bool
    paired_identity: Optional[str] = None
    last_failure_reason: Optional[str] = None
    last_challenge_age_seconds: Optional[float] = None


class PairingChallengeResponse(BaseModel):
    """Latest pairing challenge, to be rendered as a QR code."""
    code: str
    age_seconds: Optional[float] = None


@router.get(
    "/status",
    response_model=ConnectionStatusResponse,
    summary="Messaging session status",
)
async def connection_status(
    connection: ConnectionManager = Depends(get_connection_manager),
) -> ConnectionStatusResponse:
    """Current state of the messaging session."""
    return ConnectionStatusResponse(**connection.status())


@router.get(
    "/pairing",
    response_model=PairingChallengeResponse,
    summary="Current pairing challenge",
    dependencies=[Depends(require_api_key)],
    responses={404: {"description": "No pairing challenge pending"}},
)
async def get_pairing_challenge(
    board: ChallengeBoard = Depends(get_challenge_board),
) -> PairingChallengeResponse:
    """
    Latest raw QR payload.

    Anyone holding it can pair a device to the account, hence the key.
    """
    if board.code is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No pairing challenge pending",
        )
    return PairingChallengeResponse(code=board.code, age_seconds=board.age_seconds())


@router.post(
    "/pairing",
    response_model=ConnectionStatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Force a new pairing",
    dependencies=[Depends(require_api_key)],
)
async def force_pairing(
    connection: ConnectionManager = Depends(get_connection_manager),
) -> ConnectionStatusResponse:
    """
    Drop the current pairing and start over.

    Credentials are wiped and a fresh challenge becomes available at
    GET /connection/pairing.
    """
    logger.info("Forced pairing requested through the admin API")
    await connection.force_pairing()
    return ConnectionStatusResponse(**connection.status())
