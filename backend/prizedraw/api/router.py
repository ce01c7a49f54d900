"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from prizedraw.api.routes import auth, competitions, tickets, orders

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth.router)
api_router.include_router(competitions.router)
api_router.include_router(tickets.router)
api_router.include_router(orders.router)
