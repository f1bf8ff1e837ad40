"""
V1 API router aggregator — wires all endpoint modules together.
"""

from fastapi import APIRouter

from accreditation.api.v1.endpoints import (access, areas, auth, health, qr,
                                            scan, sync, users)

api_router = APIRouter()

# Auth (register, login, refresh, logout, me)
api_router.include_router(auth.router)

# QR credential issue / verify
api_router.include_router(qr.router)

# Online scan verification + logging
api_router.include_router(scan.router)

# Scanner-device sync
api_router.include_router(sync.router)

# Admin CRUD
api_router.include_router(users.router)
api_router.include_router(areas.router)
api_router.include_router(access.router)

api_router.include_router(health.router)
