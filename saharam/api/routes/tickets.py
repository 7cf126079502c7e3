from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from saharam.core.security import require_staff
from saharam.db.session import get_db
from saharam.models.user import User
from saharam.schemas.ticket import TicketVerifyRequest, TicketVerifyResponse
from saharam.services import ticket_service

router = APIRouter(prefix="/tickets", tags=["Tickets"])


@router.post("/verify", response_model=TicketVerifyResponse)
async def verify_ticket(
    body: TicketVerifyRequest,
    staff: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Scan a QR ticket at boarding (admin or driver)."""
    return await ticket_service.verify_ticket(db, body.qr_code_data, body.trip_id, staff)
