"""Request-scoped accessors for app-wide objects."""

from fastapi import Header, Request

from hostly.config import Settings
from hostly.domain.errors import ValidationError
from hostly.services.reservation_service import ReservationService

ACTOR_ID_HEADER = "X-Actor-Id"


def get_service(request: Request) -> ReservationService:
    return request.app.state.service


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_actor_id(x_actor_id: str | None = Header(default=None, alias=ACTOR_ID_HEADER)) -> str:
    """Authenticated caller id, verified upstream by the identity service."""
    if not x_actor_id:
        raise ValidationError(f"{ACTOR_ID_HEADER} header is required")
    return x_actor_id
