"""
event_service.py — Radian event registration (ACUSE, RECIBOBIEN, ACEPTACION, RECLAMO).

Location: facturacion_core/services/event_service.py
"""

import logging
from datetime import datetime

from facturacion_core.core.config import settings
from facturacion_core.core.errors import ConfigurationError, DocumentValidationError
from facturacion_core.schemas.models import (
    EventRegistrationResult, EventRequest, EventType, RejectionCode,
)
from facturacion_core.utils.document_helpers import DATETIME_FORMAT

logger = logging.getLogger(__name__)

_EVENT_TYPES = {t.value for t in EventType}
_REJECTION_CODES = {c.value for c in RejectionCode}


def validate_event(event: EventRequest) -> None:
    """Raises DocumentValidationError on the first invalid field."""
    if event.EventType not in _EVENT_TYPES:
        raise DocumentValidationError(f"invalid event type: {event.EventType}")
    if not event.DocumentoNumeroCompleto:
        raise DocumentValidationError("document number is required")
    if not event.NombreGenerador:
        raise DocumentValidationError("nombre generador is required")
    if not event.ApellidoGenerador:
        raise DocumentValidationError("apellido generador is required")
    if not event.IdentificacionGenerador:
        raise DocumentValidationError("identificacion generador is required")
    if event.EventType == EventType.RECLAMO.value and not event.CodigoRechazo:
        raise DocumentValidationError("rejection code is required for RECLAMO events")
    if event.CodigoRechazo and event.CodigoRechazo not in _REJECTION_CODES:
        raise DocumentValidationError(f"invalid rejection code: {event.CodigoRechazo}")
    try:
        datetime.strptime(event.FechaGeneracionEvento, DATETIME_FORMAT)
    except ValueError:
        raise DocumentValidationError("invalid event generation date format: must be YYYY-MM-DD HH:MM:SS")


class EventService:

    def __init__(self, gateway, config=None):
        self.gateway = gateway
        self.config = config or settings

    def _with_generator_defaults(self, event: EventRequest) -> EventRequest:
        c = self.config
        return event.model_copy(update={
            "NombreGenerador": event.NombreGenerador or c.numrot_generator_nombre,
            "ApellidoGenerador": event.ApellidoGenerador or c.numrot_generator_apellido,
            "IdentificacionGenerador": event.IdentificacionGenerador or c.numrot_generator_identificacion,
        })

    async def register_event(self, event: EventRequest) -> EventRegistrationResult:
        """
        Raises:
            DocumentValidationError: invalid event
            ConfigurationError: issuer NIT or razón social not configured
            NumrotError: gateway failure
        """
        event = self._with_generator_defaults(event)
        validate_event(event)

        if not self.config.numrot_emisor_nit:
            raise ConfigurationError("emisor nit is not configured")
        if not self.config.numrot_razon_social:
            raise ConfigurationError("razon social is not configured")

        result = await self.gateway.register_event(
            event, self.config.numrot_emisor_nit, self.config.numrot_razon_social,
        )
        logger.info(
            f"Radian event {event.EventType} registered for {event.DocumentoNumeroCompleto}: code={result.Code}"
        )
        return result
