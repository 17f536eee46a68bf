from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.auth.dependencies import get_widget_company_id, resolve_public_company
from booking_backend.core.clock import InvalidTimezoneError
from booking_backend.database import get_db
from booking_backend.errors import BookingError, as_http_exception, database_unavailable
from booking_backend.services.slots import DEFAULT_SLOT_LIMIT, DEFAULT_STEP_MINUTES, get_availability

router = APIRouter(tags=['availability'])


class SlotResponse(BaseModel):
    start_at: datetime
    end_at: datetime


class AvailabilityResponse(BaseModel):
    timezone: str
    duration_minutes: int
    step_minutes: int
    slots: list[SlotResponse]
    warning: bool = False
    sources: list[str] = []


def build_availability_response(
    db: Session,
    company_id: int,
    duration_minutes: int | None,
    step_minutes: int,
    limit: int,
) -> AvailabilityResponse:
    try:
        result = get_availability(
            db,
            company_id,
            duration_minutes=duration_minutes,
            step_minutes=step_minutes,
            limit=limit,
        )
    except BookingError as exc:
        raise as_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
    except InvalidTimezoneError as exc:
        raise HTTPException(
            status_code=500,
            detail={'error': 'invalid_timezone', 'message': str(exc)},
        ) from exc

    return AvailabilityResponse(
        timezone=result.timezone,
        duration_minutes=result.duration_minutes,
        step_minutes=result.step_minutes,
        slots=[SlotResponse(start_at=slot.start, end_at=slot.end) for slot in result.slots],
        warning=result.warning,
        sources=result.sources,
    )


@router.get('/widget/availability', response_model=AvailabilityResponse)
def widget_availability(
    duration_minutes: int | None = Query(default=None, ge=5, le=480),
    step_minutes: int = Query(default=DEFAULT_STEP_MINUTES, ge=5, le=60),
    limit: int = Query(default=DEFAULT_SLOT_LIMIT, ge=1, le=50),
    company_id: int = Depends(get_widget_company_id),
    db: Session = Depends(get_db),
):
    return build_availability_response(db, company_id, duration_minutes, step_minutes, limit)


@router.get('/book/{public_key}/availability', response_model=AvailabilityResponse)
def public_availability(
    duration_minutes: int | None = Query(default=None, ge=5, le=480),
    step_minutes: int = Query(default=DEFAULT_STEP_MINUTES, ge=5, le=60),
    limit: int = Query(default=DEFAULT_SLOT_LIMIT, ge=1, le=50),
    company_id: int = Depends(resolve_public_company),
    db: Session = Depends(get_db),
):
    return build_availability_response(db, company_id, duration_minutes, step_minutes, limit)
