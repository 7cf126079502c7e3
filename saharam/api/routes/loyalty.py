from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from saharam.core.security import get_current_user
from saharam.db.session import get_db
from saharam.models.user import User
from saharam.schemas.loyalty import LoyaltySummaryResponse
from saharam.services import loyalty_service

router = APIRouter(prefix="/loyalty", tags=["Loyalty"])


@router.get("/", response_model=LoyaltySummaryResponse)
async def loyalty_summary(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Points balance, tier and the most recent ledger entries."""
    return await loyalty_service.get_summary(db, user)
