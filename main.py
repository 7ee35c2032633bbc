import asyncio
import logging

from fastapi import FastAPI, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth import Identity, get_current_identity
from availability import check_availability
from booking_service import cancel_booking, create_booking
from config import (
    BOOKING_COMMIT_TIMEOUT_SECONDS,
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_ORIGINS,
    LOG_LEVEL,
)
from database import init_db, get_session
from errors import BookingError, InternalError
from schemas import (
    AvailabilityRequest,
    AvailabilityResponse,
    BookingCancel,
    BookingConfirmation,
    BookingCreate,
    CancelResult,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Garage Service Lane Booking")


@app.on_event("startup")
async def on_startup():
    await init_db()


# Every failure leaves as {"error": "<message>"}
@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


# --- POST /create-booking ---
@app.post("/create-booking", response_model=BookingConfirmation)
async def create_booking_endpoint(
    booking_data: BookingCreate,
    identity: Identity = Depends(get_current_identity),
    session: AsyncSession = Depends(get_session),
):
    try:
        booking = await asyncio.wait_for(
            create_booking(session, identity.user_id, booking_data),
            timeout=BOOKING_COMMIT_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        await session.rollback()
        logger.error("Booking commit for user %s timed out", identity.user_id)
        raise InternalError("Booking could not be completed in time. Please try again.")

    return BookingConfirmation(booking_id=str(booking.id), status=booking.status)


# --- POST /cancel-booking ---
@app.post("/cancel-booking", response_model=CancelResult)
async def cancel_booking_endpoint(
    cancel_data: BookingCancel,
    identity: Identity = Depends(get_current_identity),
    session: AsyncSession = Depends(get_session),
):
    await cancel_booking(
        session, identity.user_id, cancel_data.booking_id, is_admin=identity.is_admin
    )
    return CancelResult(success=True)


# --- POST /check-availability ---
@app.post("/check-availability", response_model=AvailabilityResponse)
async def check_availability_endpoint(
    query: AvailabilityRequest,
    session: AsyncSession = Depends(get_session),
):
    slots = await check_availability(session, query.date, query.sales_item_ids, query.lane_ids)
    return AvailabilityResponse(slots=slots)


app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=CORS_ALLOW_HEADERS,
)
