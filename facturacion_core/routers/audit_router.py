"""
FACTURACION-CORE: Auditoría
===========================
GET /api/v1/auditoria/{correlation_id} — intercambios con Numrot de una petición.
"""
from fastapi import APIRouter, Depends

from facturacion_core.dependencies import require_audit_repository
from facturacion_core.schemas.models import ProviderAuditLog
from facturacion_core.services.audit_service import AuditRepository
from facturacion_core.services.auth_middleware import require_bearer

router = APIRouter(prefix="/api/v1", tags=["auditoria"], dependencies=[Depends(require_bearer)])


@router.get("/auditoria/{correlation_id}", response_model=list[ProviderAuditLog])
async def get_audit_trail(
    correlation_id: str,
    repository: AuditRepository = Depends(require_audit_repository),
):
    """Más reciente primero."""
    return await repository.find_by_correlation_id(correlation_id)
