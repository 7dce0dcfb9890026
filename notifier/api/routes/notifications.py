"""
Notification Endpoints

Manual triggers for the dispatcher and free-form operator messages.
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, HttpUrl

from notifier.api.dependencies import get_dispatcher
from notifier.api.middleware.auth import require_api_key
from notifier.core.errors import ErrorKind
from notifier.core.notifications import DispatchResult, NotificationDispatcher, event_for
from notifier.models.database import NotificationKind

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Notifications"], dependencies=[Depends(require_api_key)])

# HTTP status for undelivered results
FAILURE_STATUS: dict[ErrorKind, int] = {
    ErrorKind.SUBJECT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.NO_RECIPIENT_ADDRESS: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.NOT_CONNECTED: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.DELIVERY_FAILED: status.HTTP_502_BAD_GATEWAY,
}


class DispatchResponse(BaseModel):
    """Outcome of a dispatch."""
    delivered: bool
    reason: Optional[str] = None
    detail: Optional[str] = None


class MessageRequest(BaseModel):
    """Free-form message to a phone number."""
    phone: str = Field(..., min_length=1, max_length=40, examples=["(86) 99805-3279"])
    text: str = Field(..., min_length=1, max_length=4096)
    customer_name: Optional[str] = Field(None, max_length=120)


class ImageMessageRequest(BaseModel):
    """Image, fetched from a public URL, sent to a phone number."""
    phone: str = Field(..., min_length=1, max_length=40, examples=["(86) 99805-3279"])
    image_url: HttpUrl = Field(..., examples=["https://mrborges.com.br/promo.jpg"])
    caption: Optional[str] = Field(None, max_length=1024)
    customer_name: Optional[str] = Field(None, max_length=120)


def _to_response(result: DispatchResult) -> JSONResponse:
    if result.delivered:
        code = status.HTTP_200_OK
    else:
        code = FAILURE_STATUS.get(result.reason, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(status_code=code, content=result.to_dict())


@router.post(
    "/notifications/{kind}/{appointment_id}",
    response_model=DispatchResponse,
    summary="Trigger a notification",
    responses={
        404: {"description": "Appointment not found"},
        422: {"description": "Customer has no phone number"},
        503: {"description": "Messaging session not connected"},
    },
)
async def trigger_notification(
    kind: NotificationKind,
    appointment_id: uuid.UUID,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> JSONResponse:
    """
    Run the dispatcher for one appointment, as a detector would.

    Deduplication still applies: a notification already sent is reported as
    delivered with reason ``already_notified``.
    """
    logger.info(f"Manual {kind.value} requested for appointment {appointment_id}")
    result = await dispatcher.handle(event_for(kind, appointment_id))
    return _to_response(result)


@router.post(
    "/messages",
    response_model=DispatchResponse,
    summary="Send a custom message",
)
async def send_message(
    body: MessageRequest,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> JSONResponse:
    """Send operator-written text to any phone number. Nothing is recorded."""
    result = await dispatcher.send_custom(body.phone, body.text, body.customer_name)
    return _to_response(result)


@router.post(
    "/messages/image",
    response_model=DispatchResponse,
    summary="Send an image",
)
async def send_image(
    body: ImageMessageRequest,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> JSONResponse:
    """Send an image by URL, with an optional caption. Nothing is recorded."""
    result = await dispatcher.send_custom_image(
        body.phone, str(body.image_url), body.caption, body.customer_name
    )
    return _to_response(result)
