from fastapi import APIRouter, Depends

from app.api.v1 import health
from app.api.v1.endpoints import vms_sync
from app.core.security import require_roles
from app.schemas import COMMON_RESPONSES

# Router principal avec réponses RFC 9457 par défaut
router = APIRouter(responses=COMMON_RESPONSES)

router.include_router(health.router, tags=["health"])
router.include_router(
    vms_sync.router,
    prefix="/vms",
    tags=["vms-sync"],
    dependencies=[Depends(require_roles("admin"))],
)
