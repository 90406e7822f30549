"""
document_validator.py — OpenETL document checks before enrichment.

Location: facturacion_core/services/document_validator.py

Checks run in order and stop at the first failure (fail-fast per document):
1. Required fields (rfa_resolucion only for FC and DS)
2. cdo_fecha is YYYY-MM-DD and equals today in America/Bogota (DIAN FAD09e)
3. cdo_hora is HH:MM:SS
4. At least one item
5. cdo_vencimiento, when present, is YYYY-MM-DD and not before cdo_fecha
6. tde_codigo belongs to the array the document came in
7. DS documents carry top_codigo "10"

Messages are prefixed with the 1-based position of the document in its array.
"""

from typing import Callable, Optional

from facturacion_core.core.errors import DocumentValidationError
from facturacion_core.schemas.models import ALLOWED_TDE_CODES, DocumentsByType, OpenETLDocument
from facturacion_core.utils.document_helpers import DATE_FORMAT, now_bogota, parse_date, parse_time

# Checked in this order
REQUIRED_FIELDS = (
    "tde_codigo", "ofe_identificacion", "adq_identificacion", "rfa_resolucion",
    "cdo_consecutivo", "cdo_fecha", "cdo_hora", "mon_codigo",
    "cdo_valor_sin_impuestos", "cdo_impuestos", "cdo_total",
)

# Notes do not carry a numbering resolution
RESOLUTION_OPTIONAL_TYPES = ("NC", "ND")

DS_OPERATION_CODE = "10"


def select_document_type(batch: DocumentsByType) -> tuple[str, list[OpenETLDocument]]:
    """
    Return the single non-empty (type, documents) pair of a batch.

    Raises:
        DocumentValidationError: no documents, or more than one type present
    """
    types = batch.non_empty_types()
    if not types:
        raise DocumentValidationError("no documents provided")
    if len(types) > 1:
        raise DocumentValidationError("only one document type (FC, NC, ND, or DS) can be provided per request")
    return types[0], getattr(batch, types[0])


class DocumentValidator:
    """
    Per-document validation.

    `today` returns the reference date as YYYY-MM-DD; it defaults to the
    current date in Colombia and can be replaced in tests.
    """

    def __init__(self, today: Optional[Callable[[], str]] = None):
        self._today = today or (lambda: now_bogota().strftime(DATE_FORMAT))

    def validate(self, doc: OpenETLDocument, document_type: str, index: int) -> None:
        """Raises DocumentValidationError with "document N: ..." on the first failed check."""
        n = index + 1

        for field in REQUIRED_FIELDS:
            if field == "rfa_resolucion" and document_type in RESOLUTION_OPTIONAL_TYPES:
                continue
            if not getattr(doc, field):
                raise DocumentValidationError(f"document {n}: {field} is required")

        try:
            issue_date = parse_date(doc.cdo_fecha)
        except ValueError:
            raise DocumentValidationError(f"document {n}: invalid cdo_fecha format: must be YYYY-MM-DD")

        today = self._today()
        if doc.cdo_fecha != today:
            raise DocumentValidationError(
                f"document {n}: cdo_fecha must be today's date ({today}) for DIAN FAD09e compliance. "
                f"Provided: {doc.cdo_fecha}"
            )

        try:
            parse_time(doc.cdo_hora)
        except ValueError:
            raise DocumentValidationError(f"document {n}: invalid cdo_hora format: must be HH:mm:ss")

        if not doc.items:
            raise DocumentValidationError(f"document {n}: at least one item is required")

        if doc.cdo_vencimiento:
            try:
                due_date = parse_date(doc.cdo_vencimiento)
            except ValueError:
                raise DocumentValidationError(f"document {n}: invalid cdo_vencimiento format: must be YYYY-MM-DD")
            if due_date < issue_date:
                raise DocumentValidationError(
                    f"document {n}: cdo_vencimiento ({doc.cdo_vencimiento}) must be on or after "
                    f"cdo_fecha ({doc.cdo_fecha})"
                )

        allowed = ALLOWED_TDE_CODES.get(document_type, ())
        if doc.tde_codigo not in allowed:
            raise DocumentValidationError(
                f"document {n}: tde_codigo {doc.tde_codigo} does not match document type "
                f"{document_type} (expected: {list(allowed)})"
            )

        if document_type == "DS":
            if not doc.top_codigo:
                raise DocumentValidationError(f"document {n}: top_codigo is required for DS documents")
            if doc.top_codigo != DS_OPERATION_CODE:
                raise DocumentValidationError(
                    f'document {n}: top_codigo must be "10" for DS documents, got: {doc.top_codigo}'
                )

    def validate_all(self, documents: list[OpenETLDocument], document_type: str) -> None:
        for index, doc in enumerate(documents):
            self.validate(doc, document_type, index)


document_validator = DocumentValidator()
