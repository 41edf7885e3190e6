from fastapi import APIRouter

from .routes import (
    admin,
    billing,
    health,
    hooks,
    pro_status,
)

api_router = APIRouter()

# Health check
api_router.include_router(health.router, tags=["health"])

# Pro status for the signed-in user
api_router.include_router(pro_status.router, prefix="/pro-status", tags=["pro-status"])

# Stripe checkout + webhook
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])

# Server-to-server: auth hook and scheduler
api_router.include_router(hooks.router, prefix="/hooks", tags=["hooks"])

# Admin: manual comps
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
