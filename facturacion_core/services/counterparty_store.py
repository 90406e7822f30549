"""
counterparty_store.py — Acquirer and provider master data.

Location: facturacion_core/services/counterparty_store.py

Two Supabase tables keyed by (ofe_identificacion, adq|pro_identificacion):
- acquirer (+ acquirer_contact): counterparties of FC/NC/ND
- provider: counterparties of DS

Identifiers are stored and looked up in their base form (verification digit
stripped), so "860011153-6" and "860011153" hit the same row.
The registration pipeline only reads (find_acquirer / find_provider); the
CRUD methods back the /adquirentes and /proveedores routers.
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

from facturacion_core.core.errors import CounterpartyError
from facturacion_core.schemas.models import (
    Acquirer, AcquirerContact, CounterpartyListResponse, Provider, ProviderStatus,
)
from facturacion_core.utils.document_helpers import is_blank, normalize_nit

logger = logging.getLogger(__name__)

ACQUIRER_TABLE = "acquirer"
ACQUIRER_CONTACT_TABLE = "acquirer_contact"
PROVIDER_TABLE = "provider"

CONTACT_TYPES = ("AccountingContact", "DeliveryContact", "BuyerContact")

# Whitelisted ORDER BY columns
ACQUIRER_SORT_FIELDS = {
    "id", "created_at", "updated_at", "ofe_identificacion",
    "adq_identificacion", "adq_razon_social", "adq_nombre_comercial",
}
PROVIDER_SORT_FIELDS = {
    "id", "fecha_creacion", "fecha_modificacion", "ofe_identificacion",
    "pro_identificacion", "pro_razon_social", "pro_nombre_comercial",
}

MAX_PER_PAGE = 100
EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$")

# Characters with meaning inside a PostgREST or=() filter
_FILTER_UNSAFE = re.compile(r"[,()*]")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ─────────────────────────────────────────────────────────────
# VALIDATION
# ─────────────────────────────────────────────────────────────

def _check_max_length(value: Optional[str], max_len: int, field: str) -> None:
    if value and len(value) > max_len:
        raise CounterpartyError(f"{field} excede la longitud máxima de {max_len} caracteres")


def _check_email(value: Optional[str], field: str) -> None:
    if value and not EMAIL_RE.match(value):
        raise CounterpartyError(f"{field} tiene un formato de correo inválido")


def _check_email_list(value: Optional[str], field: str) -> None:
    if not value:
        return
    for i, email in enumerate(re.split(r"[;,]", value), 1):
        email = email.strip()
        if email:
            _check_email(email, f"{field} (email {i})")


def validate_acquirer(acq: Acquirer) -> None:
    """Required fields, person-type rules, lengths, e-mails and contacts."""
    for field in ("ofe_identificacion", "adq_identificacion", "tdo_codigo", "toj_codigo", "pai_codigo"):
        if is_blank(getattr(acq, field)):
            raise CounterpartyError(f"{field} es requerido")

    if acq.toj_codigo == "1":
        if is_blank(acq.adq_razon_social) and is_blank(acq.adq_nombre_comercial):
            raise CounterpartyError("para persona jurídica, adq_razon_social o adq_nombre_comercial es requerido")
    elif acq.toj_codigo == "2":
        if is_blank(acq.adq_primer_nombre):
            raise CounterpartyError("para persona natural, adq_primer_nombre es requerido")
        if is_blank(acq.adq_primer_apellido):
            raise CounterpartyError("para persona natural, adq_primer_apellido es requerido")

    _check_max_length(acq.ofe_identificacion, 20, "ofe_identificacion")
    _check_max_length(acq.adq_identificacion, 20, "adq_identificacion")
    _check_max_length(acq.adq_razon_social, 255, "adq_razon_social")
    _check_max_length(acq.adq_direccion, 255, "adq_direccion")
    _check_max_length(acq.adq_direccion_domicilio_fiscal, 255, "adq_direccion_domicilio_fiscal")
    _check_max_length(acq.adq_nombre_contacto, 255, "adq_nombre_contacto")
    _check_email(acq.adq_correo, "adq_correo")
    _check_email_list(acq.adq_correos_notificacion, "adq_correos_notificacion")

    for i, contact in enumerate(acq.contactos, 1):
        if is_blank(contact.con_nombre):
            raise CounterpartyError(f"contacto {i}: con_nombre es requerido")
        if is_blank(contact.con_tipo):
            raise CounterpartyError(f"contacto {i}: con_tipo es requerido")
        if contact.con_tipo not in CONTACT_TYPES:
            raise CounterpartyError(
                f"contacto {i}: con_tipo debe ser AccountingContact, DeliveryContact o BuyerContact"
            )


def validate_provider(pro: Provider) -> None:
    for field in ("ofe_identificacion", "pro_identificacion", "tdo_codigo", "toj_codigo", "pro_correo"):
        if is_blank(getattr(pro, field)):
            raise CounterpartyError(f"{field} es requerido")

    _check_max_length(pro.ofe_identificacion, 20, "ofe_identificacion")
    _check_max_length(pro.pro_identificacion, 20, "pro_identificacion")
    _check_max_length(pro.tdo_codigo, 10, "tdo_codigo")
    _check_max_length(pro.toj_codigo, 10, "toj_codigo")
    _check_email(pro.pro_correo, "pro_correo")
    _check_email_list(pro.pro_correos_notificacion, "pro_correos_notificacion")

    if pro.estado and pro.estado.upper() not in (s.value for s in ProviderStatus):
        raise CounterpartyError("estado debe ser 'ACTIVO' o 'INACTIVO'")

    if pro.toj_codigo == "1":
        if is_blank(pro.pro_razon_social) and is_blank(pro.pro_nombre_comercial):
            raise CounterpartyError("para persona jurídica, pro_razon_social o pro_nombre_comercial es requerido")
    elif pro.toj_codigo == "2":
        if is_blank(pro.pro_primer_nombre):
            raise CounterpartyError("para persona natural, pro_primer_nombre es requerido")
        if is_blank(pro.pro_primer_apellido):
            raise CounterpartyError("para persona natural, pro_primer_apellido es requerido")


# ─────────────────────────────────────────────────────────────
# STORE
# ─────────────────────────────────────────────────────────────

class CounterpartyStore:
    """
    Supabase-backed counterparty tables.

    Usage:
        store = CounterpartyStore(get_supabase())
        acquirer = await store.find_acquirer("860011153-6", "900123456")
    """

    def __init__(self, supabase: Any):
        self.supabase = supabase

    async def _execute(self, action: str, build):
        """Run a synchronous supabase query off the event loop."""
        try:
            return await asyncio.to_thread(lambda: build().execute())
        except CounterpartyError:
            raise
        except Exception as e:
            logger.error(f"Counterparty store error ({action}): {e}")
            raise CounterpartyError(f"{action}: {e}", status_code=500) from e

    # ── Lookups used by the registration pipeline ──

    async def find_acquirer(self, ofe_identificacion: str, adq_identificacion: str) -> Optional[Acquirer]:
        """Acquirer with its contacts, or None. Both ids are normalized."""
        ofe, adq = normalize_nit(ofe_identificacion), normalize_nit(adq_identificacion)
        result = await self._execute(
            "find acquirer",
            lambda: self.supabase.table(ACQUIRER_TABLE)
            .select(f"*, {ACQUIRER_CONTACT_TABLE}(*)")
            .eq("ofe_identificacion", ofe)
            .eq("adq_identificacion", adq)
            .limit(1),
        )
        rows = result.data or []
        return self._to_acquirer(rows[0]) if rows else None

    async def find_provider(self, ofe_identificacion: str, pro_identificacion: str) -> Optional[Provider]:
        """Provider row, or None. Both ids are normalized."""
        ofe, pro = normalize_nit(ofe_identificacion), normalize_nit(pro_identificacion)
        result = await self._execute(
            "find provider",
            lambda: self.supabase.table(PROVIDER_TABLE)
            .select("*")
            .eq("ofe_identificacion", ofe)
            .eq("pro_identificacion", pro)
            .limit(1),
        )
        rows = result.data or []
        return Provider(**rows[0]) if rows else None

    @staticmethod
    def _to_acquirer(row: dict) -> Acquirer:
        contacts = row.pop(ACQUIRER_CONTACT_TABLE, None) or []
        return Acquirer(**row, contactos=[AcquirerContact(**c) for c in contacts if isinstance(c, dict)])

    # ── Acquirer CRUD ──

    async def create_acquirer(self, acq: Acquirer) -> Acquirer:
        validate_acquirer(acq)
        acq.ofe_identificacion = normalize_nit(acq.ofe_identificacion)
        acq.adq_identificacion = normalize_nit(acq.adq_identificacion)

        if await self.find_acquirer(acq.ofe_identificacion, acq.adq_identificacion):
            raise CounterpartyError(
                f"el Adquiriente [{acq.adq_identificacion}] para el OFE [{acq.ofe_identificacion}] ya existe"
            )

        row = acq.model_dump(exclude={"id", "contactos", "created_at", "updated_at"})
        row["created_at"] = row["updated_at"] = _now()
        result = await self._execute(
            "create acquirer", lambda: self.supabase.table(ACQUIRER_TABLE).insert(row),
        )
        created = (result.data or [row])[0]
        await self._replace_contacts(created.get("id"), acq.contactos)
        logger.info(f"Acquirer created: ofe={acq.ofe_identificacion}, adq={acq.adq_identificacion}")
        return Acquirer(**created, contactos=acq.contactos)

    async def get_acquirer(self, ofe_identificacion: str, adq_identificacion: str) -> Acquirer:
        acq = await self.find_acquirer(ofe_identificacion, adq_identificacion)
        if acq is None:
            raise CounterpartyError("el Id del adquirente no existe")
        return acq

    async def update_acquirer(self, ofe_identificacion: str, adq_identificacion: str,
                              acq: Acquirer) -> Acquirer:
        existing = await self.get_acquirer(ofe_identificacion, adq_identificacion)
        acq.ofe_identificacion = existing.ofe_identificacion
        acq.adq_identificacion = existing.adq_identificacion
        validate_acquirer(acq)

        row = acq.model_dump(exclude={"id", "contactos", "created_at", "updated_at",
                                      "ofe_identificacion", "adq_identificacion"})
        row["updated_at"] = _now()
        await self._execute(
            "update acquirer",
            lambda: self.supabase.table(ACQUIRER_TABLE).update(row).eq("id", existing.id),
        )
        await self._replace_contacts(existing.id, acq.contactos)
        logger.info(f"Acquirer updated: ofe={existing.ofe_identificacion}, adq={existing.adq_identificacion}")
        return await self.get_acquirer(existing.ofe_identificacion, existing.adq_identificacion)

    async def _replace_contacts(self, acquirer_id: Optional[int], contacts: list[AcquirerContact]) -> None:
        if acquirer_id is None:
            return
        await self._execute(
            "delete contacts",
            lambda: self.supabase.table(ACQUIRER_CONTACT_TABLE).delete().eq("acquirer_id", acquirer_id),
        )
        if contacts:
            rows = [{**c.model_dump(), "acquirer_id": acquirer_id} for c in contacts]
            await self._execute(
                "insert contacts", lambda: self.supabase.table(ACQUIRER_CONTACT_TABLE).insert(rows),
            )

    async def list_acquirers(self, page: int = 1, per_page: int = 20, ofe: Optional[str] = None,
                             sort_by: str = "created_at", order: str = "desc") -> CounterpartyListResponse:
        return await self._list(ACQUIRER_TABLE, ACQUIRER_SORT_FIELDS, "created_at",
                                page, per_page, ofe, sort_by, order)

    async def search_acquirers(self, q: str, ofe: Optional[str] = None, limit: int = 20) -> list[Acquirer]:
        rows = await self._search(
            ACQUIRER_TABLE, ("adq_razon_social", "adq_nombre_comercial", "adq_identificacion"),
            q, ofe, limit,
        )
        return [Acquirer(**row) for row in rows]

    # ── Provider CRUD ──

    async def create_provider(self, pro: Provider) -> Provider:
        validate_provider(pro)
        pro.ofe_identificacion = normalize_nit(pro.ofe_identificacion)
        pro.pro_identificacion = normalize_nit(pro.pro_identificacion)
        pro.estado = (pro.estado or ProviderStatus.ACTIVO.value).upper()

        if await self.find_provider(pro.ofe_identificacion, pro.pro_identificacion):
            raise CounterpartyError(
                f"ya existe un Proveedor con el numero de identificacion "
                f"[{pro.pro_identificacion}] para el OFE [{pro.ofe_identificacion}]"
            )

        row = pro.model_dump(exclude={"id", "fecha_creacion", "fecha_modificacion"})
        row["fecha_creacion"] = row["fecha_modificacion"] = _now()
        result = await self._execute(
            "create provider", lambda: self.supabase.table(PROVIDER_TABLE).insert(row),
        )
        logger.info(f"Provider created: ofe={pro.ofe_identificacion}, pro={pro.pro_identificacion}")
        return Provider(**(result.data or [row])[0])

    async def get_provider(self, ofe_identificacion: str, pro_identificacion: str) -> Provider:
        pro = await self.find_provider(ofe_identificacion, pro_identificacion)
        if pro is None:
            raise CounterpartyError("el Id del proveedor no existe")
        return pro

    async def update_provider(self, ofe_identificacion: str, pro_identificacion: str,
                              pro: Provider) -> Provider:
        existing = await self.get_provider(ofe_identificacion, pro_identificacion)
        pro.ofe_identificacion = existing.ofe_identificacion
        pro.pro_identificacion = existing.pro_identificacion
        validate_provider(pro)
        pro.estado = pro.estado.upper()

        row = pro.model_dump(exclude={"id", "fecha_creacion", "fecha_modificacion",
                                      "ofe_identificacion", "pro_identificacion"})
        row["fecha_modificacion"] = _now()
        await self._execute(
            "update provider",
            lambda: self.supabase.table(PROVIDER_TABLE).update(row).eq("id", existing.id),
        )
        logger.info(f"Provider updated: ofe={existing.ofe_identificacion}, pro={existing.pro_identificacion}")
        return await self.get_provider(existing.ofe_identificacion, existing.pro_identificacion)

    async def list_providers(self, page: int = 1, per_page: int = 20, ofe: Optional[str] = None,
                             sort_by: str = "fecha_creacion", order: str = "desc") -> CounterpartyListResponse:
        return await self._list(PROVIDER_TABLE, PROVIDER_SORT_FIELDS, "fecha_creacion",
                                page, per_page, ofe, sort_by, order)

    async def search_providers(self, q: str, ofe: Optional[str] = None, limit: int = 20) -> list[Provider]:
        rows = await self._search(
            PROVIDER_TABLE, ("pro_razon_social", "pro_nombre_comercial", "pro_identificacion"),
            q, ofe, limit,
        )
        return [Provider(**row) for row in rows]

    # ── Shared list/search ──

    async def _list(self, table: str, sort_fields: set[str], default_sort: str, page: int,
                    per_page: int, ofe: Optional[str], sort_by: str, order: str) -> CounterpartyListResponse:
        page = max(page, 1)
        per_page = min(max(per_page, 1), MAX_PER_PAGE)
        if sort_by not in sort_fields:
            sort_by = default_sort
        descending = (order or "").lower() != "asc"
        offset = (page - 1) * per_page

        def build():
            query = self.supabase.table(table).select("*", count="exact")
            if ofe:
                query = query.eq("ofe_identificacion", normalize_nit(ofe))
            return query.order(sort_by, desc=descending).range(offset, offset + per_page - 1)

        result = await self._execute(f"list {table}", build)
        return CounterpartyListResponse(
            data=result.data or [], total=result.count or 0, page=page, per_page=per_page,
        )

    async def _search(self, table: str, columns: tuple[str, ...], q: str,
                      ofe: Optional[str], limit: int) -> list[dict]:
        term = _FILTER_UNSAFE.sub(" ", (q or "").strip())
        if not term:
            raise CounterpartyError("el parámetro q es requerido")
        pattern = ",".join(f"{col}.ilike.%{term}%" for col in columns)

        def build():
            query = self.supabase.table(table).select("*").or_(pattern)
            if ofe:
                query = query.eq("ofe_identificacion", normalize_nit(ofe))
            return query.limit(min(max(limit, 1), MAX_PER_PAGE))

        result = await self._execute(f"search {table}", build)
        return result.data or []
