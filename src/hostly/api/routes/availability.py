"""Availability endpoint."""

from datetime import date

from fastapi import APIRouter, Depends, Query

from hostly.api.dependencies import get_service
from hostly.services.reservation_service import ReservationService

router = APIRouter(prefix="/properties", tags=["availability"])


@router.get("/{property_id}/availability")
def get_availability(
    property_id: str,
    start_date: date = Query(...),
    end_date: date = Query(...),
    service: ReservationService = Depends(get_service),
) -> dict:
    """Unavailable sub-intervals of [start_date, end_date), in date order."""
    unavailable = service.unavailable_intervals(property_id, start_date, end_date)
    return {
        "property_id": property_id,
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "unavailable": [interval.to_dict() for interval in unavailable],
    }
