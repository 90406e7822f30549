"""
FACTURACION-CORE: Dependencias FastAPI
======================================
Singletons for the Supabase client, the Numrot gateway and the services
built on top of them.
"""
from functools import lru_cache
from typing import Optional

from fastapi import HTTPException
from supabase import Client as SupabaseClient, create_client

from facturacion_core.core.config import settings
from facturacion_core.modules.numrot_auth import NumrotAuthManager
from facturacion_core.modules.numrot_client import NumrotClient
from facturacion_core.modules.traced_transport import AuditDispatcher, TracedClient
from facturacion_core.services.audit_service import AuditRepository
from facturacion_core.services.counterparty_store import CounterpartyStore
from facturacion_core.services.document_service import DocumentService
from facturacion_core.services.event_service import EventService
from facturacion_core.services.streaming import RegistrationResponder


# ── Singletons ──

@lru_cache()
def get_supabase() -> Optional[SupabaseClient]:
    """Supabase client singleton (service role). None when not configured."""
    if not settings.database_configured:
        return None
    return create_client(settings.supabase_url, settings.supabase_service_role_key)


@lru_cache()
def get_audit_repository() -> Optional[AuditRepository]:
    supabase = get_supabase()
    return AuditRepository(supabase) if supabase is not None else None


@lru_cache()
def get_audit_dispatcher() -> Optional[AuditDispatcher]:
    repository = get_audit_repository()
    if repository is None or not settings.audit_enabled:
        return None
    return AuditDispatcher(repository)


@lru_cache()
def get_counterparty_store() -> Optional[CounterpartyStore]:
    supabase = get_supabase()
    return CounterpartyStore(supabase) if supabase is not None else None


@lru_cache()
def get_traced_client() -> TracedClient:
    return TracedClient(provider="numrot", auditor=get_audit_dispatcher())


@lru_cache()
def get_numrot_client() -> NumrotClient:
    http = get_traced_client()
    return NumrotClient(http, NumrotAuthManager(http), counterparty_store=get_counterparty_store())


@lru_cache()
def get_document_service() -> DocumentService:
    return DocumentService(get_numrot_client(), store=get_counterparty_store())


@lru_cache()
def get_registration_responder() -> RegistrationResponder:
    return RegistrationResponder(get_document_service())


@lru_cache()
def get_event_service() -> EventService:
    return EventService(get_numrot_client())


# ── Guards ──

def require_counterparty_store() -> CounterpartyStore:
    store = get_counterparty_store()
    if store is None:
        raise HTTPException(503, "La base de datos no está configurada")
    return store


def require_audit_repository() -> AuditRepository:
    repository = get_audit_repository()
    if repository is None:
        raise HTTPException(503, "La base de datos no está configurada")
    return repository
