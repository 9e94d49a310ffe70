"""
Main API router aggregator
"""
from fastapi import APIRouter

from app.api.v1.endpoints import (
    cases,
    reviews,
    reviewers,
    transfers,
    payments,
    lands,
    health,
)

api_router = APIRouter()

# Include routers
api_router.include_router(lands.router, prefix="/lands", tags=["Land"])
api_router.include_router(payments.router, prefix="/payments", tags=["Payments"])
api_router.include_router(cases.router, prefix="/cases", tags=["Applications"])
api_router.include_router(reviews.router, prefix="/reviews", tags=["Reviews"])
api_router.include_router(reviewers.router, prefix="/reviewers", tags=["Reviewer Administration"])
api_router.include_router(transfers.router, prefix="/transfers", tags=["Ownership Transfers"])
api_router.include_router(health.router, prefix="/health", tags=["Health"])
