"""
Back-office endpoints. Every route requires the admin role.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from saharam.api.routes.payments import after_reconciliation
from saharam.core.security import require_admin
from saharam.db.session import get_db
from saharam.models.user import User
from saharam.schemas.booking import BookingListResponse, BookingResponse, BookingStatusUpdate
from saharam.schemas.loyalty import LoyaltyAuditResponse
from saharam.schemas.payment import ReceiptResponse, ReceiptReview, ReceiptReviewResponse
from saharam.schemas.trip import (
    DriverCreate,
    DriverResponse,
    RouteCreate,
    RouteResponse,
    TripCreate,
    TripResponse,
    VehicleCreate,
    VehicleResponse,
)
from saharam.services import admin_service, bank_transfer_service, booking_service, loyalty_service
from saharam.services.cache_service import invalidate_trip_cache

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


class TripListResponse(BaseModel):
    trips: list[TripResponse]
    total: int
    page: int
    page_size: int


class HoldSweepResponse(BaseModel):
    released: int


@router.post("/routes", response_model=RouteResponse, status_code=status.HTTP_201_CREATED)
async def create_route(data: RouteCreate, db: AsyncSession = Depends(get_db)):
    return await admin_service.create_route(db, data)


@router.get("/routes", response_model=list[RouteResponse])
async def list_routes(db: AsyncSession = Depends(get_db)):
    return await admin_service.list_routes(db)


@router.post("/vehicles", response_model=VehicleResponse, status_code=status.HTTP_201_CREATED)
async def create_vehicle(data: VehicleCreate, db: AsyncSession = Depends(get_db)):
    return await admin_service.create_vehicle(db, data)


@router.get("/vehicles", response_model=list[VehicleResponse])
async def list_vehicles(db: AsyncSession = Depends(get_db)):
    return await admin_service.list_vehicles(db)


@router.post("/drivers", response_model=DriverResponse, status_code=status.HTTP_201_CREATED)
async def create_driver(data: DriverCreate, db: AsyncSession = Depends(get_db)):
    return await admin_service.create_driver(db, data)


@router.get("/drivers", response_model=list[DriverResponse])
async def list_drivers(db: AsyncSession = Depends(get_db)):
    return await admin_service.list_drivers(db)


@router.post("/trips", response_model=TripResponse, status_code=status.HTTP_201_CREATED)
async def create_trip(data: TripCreate, db: AsyncSession = Depends(get_db)):
    trip = await admin_service.create_trip(db, data)
    await db.commit()
    await invalidate_trip_cache()
    return trip


@router.get("/trips", response_model=TripListResponse)
async def list_trips(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    upcoming_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    trips, total = await admin_service.list_trips(db, page, page_size, upcoming_only)
    return TripListResponse(
        trips=[TripResponse.model_validate(t) for t in trips],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.delete("/trips/{trip_id}", response_model=TripResponse)
async def deactivate_trip(trip_id: int, db: AsyncSession = Depends(get_db)):
    """Deactivate a trip. Trips are never deleted."""
    trip = await admin_service.deactivate_trip(db, trip_id)
    await db.commit()
    await invalidate_trip_cache()
    return trip


@router.get("/bookings", response_model=BookingListResponse)
async def list_bookings(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    booking_status: Optional[str] = Query(None, alias="status"),
    payment_status: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    bookings, total = await booking_service.list_bookings(db, page, page_size, booking_status, payment_status)
    return BookingListResponse(
        bookings=[BookingResponse.model_validate(b) for b in bookings],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.patch("/bookings/{booking_id}", response_model=BookingResponse)
async def update_booking_status(
    booking_id: int,
    body: BookingStatusUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    booking = await admin_service.update_booking_status(db, booking_id, body.status, admin)
    await db.commit()
    await invalidate_trip_cache()
    return booking


@router.post("/holds/release-expired", response_model=HoldSweepResponse)
async def release_expired_holds(db: AsyncSession = Depends(get_db)):
    """Cron-style sweep of unpaid bookings whose seat hold has lapsed."""
    released = await admin_service.sweep_expired_holds(db)
    if released:
        await db.commit()
        await invalidate_trip_cache()
    return HoldSweepResponse(released=released)


@router.get("/loyalty/{user_id}/audit", response_model=LoyaltyAuditResponse)
async def audit_loyalty(user_id: int, db: AsyncSession = Depends(get_db)):
    """Compare a user's points balance with the sum of their ledger."""
    return await loyalty_service.audit_balance(db, user_id)


@router.get("/receipts", response_model=list[ReceiptResponse])
async def list_receipts(
    receipt_status: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
):
    """Bank-transfer receipts, oldest first; filter with ?status=pending to get the review queue."""
    return await bank_transfer_service.list_receipts(db, receipt_status)


async def _review(
    receipt_id: int,
    approve: bool,
    body: Optional[ReceiptReview],
    admin: User,
    db: AsyncSession,
    background_tasks: BackgroundTasks,
) -> ReceiptReviewResponse:
    receipt, booking, outcome = await bank_transfer_service.review_receipt(
        db, receipt_id, approve, admin, body.note if body else None
    )
    await after_reconciliation(db, booking, outcome, background_tasks)
    return ReceiptReviewResponse(
        receipt=ReceiptResponse.model_validate(receipt),
        outcome=outcome,
        booking=BookingResponse.model_validate(booking),
    )


@router.post("/receipts/{receipt_id}/approve", response_model=ReceiptReviewResponse)
async def approve_receipt(
    receipt_id: int,
    background_tasks: BackgroundTasks,
    body: Optional[ReceiptReview] = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Accept a transfer: the booking is confirmed as if the gateway reported success."""
    return await _review(receipt_id, True, body, admin, db, background_tasks)


@router.post("/receipts/{receipt_id}/reject", response_model=ReceiptReviewResponse)
async def reject_receipt(
    receipt_id: int,
    background_tasks: BackgroundTasks,
    body: Optional[ReceiptReview] = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Refuse a transfer: the payment fails and the seats are released."""
    return await _review(receipt_id, False, body, admin, db, background_tasks)
