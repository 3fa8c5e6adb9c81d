"""
API v1 Router

All org-scoped endpoints are prefixed with /orgs/{orgSlug}.
"""

from fastapi import APIRouter

from debtbook import __version__

from . import customers, join_requests, members, transactions
from .organizations import router_scoped as orgs_scoped_router

router = APIRouter()

# Organization routes (org-scoped: get, delete)
router.include_router(orgs_scoped_router, prefix="/orgs/{orgSlug}", tags=["Organizations"])

# Include resource routers
router.include_router(customers.router, prefix="/orgs/{orgSlug}/customers", tags=["Customers"])
router.include_router(transactions.router, prefix="/orgs/{orgSlug}/transactions", tags=["Transactions"])
router.include_router(join_requests.router, prefix="/orgs/{orgSlug}/join-requests", tags=["Join Requests"])
router.include_router(members.router, prefix="/orgs/{orgSlug}/members", tags=["Members"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: returns version and available endpoints."""
    return {
        "api": "v1",
        "version": __version__,
        "endpoints": [
            "/orgs/{orgSlug}",
            "/orgs/{orgSlug}/customers",
            "/orgs/{orgSlug}/transactions",
            "/orgs/{orgSlug}/join-requests",
            "/orgs/{orgSlug}/members",
        ],
    }
