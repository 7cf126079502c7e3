"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter

from saharam.api.routes import admin, auth, bookings, loyalty, payments, tickets, trips

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth.router)
api_router.include_router(trips.router)
api_router.include_router(bookings.router)
api_router.include_router(payments.router)
api_router.include_router(tickets.router)
api_router.include_router(loyalty.router)
api_router.include_router(admin.router)
