"""
Request dependencies.

Long-lived components are built once in the application lifespan and kept
on ``app.state``; routes reach them through these dependencies.
"""

from fastapi import HTTPException, Request, status

from notifier.core.connection import ChallengeBoard, ConnectionManager
from notifier.core.notifications import NotificationDispatcher


def _component(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not initialized",
        )
    return component


def get_connection_manager(request: Request) -> ConnectionManager:
    return _component(request, "connection")


def get_challenge_board(request: Request) -> ChallengeBoard:
    return _component(request, "challenges")


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return _component(request, "dispatcher")
