from fastapi import Depends, Header

from customs_edi.config import Settings, settings
from customs_edi.database import get_db
from customs_edi.edi.archive import ArchiveStore
from customs_edi.edi.connector import ExchangeEngine
from customs_edi.edi.incoming import ResponseCorrelator
from customs_edi.edi.outgoing import KeyedLocks, TransmissionQueue
from customs_edi.edi.transport import Transport, build_transport
from customs_edi.exceptions import UnlockNotPermittedError
from customs_edi.lifecycle.service import DeclarationService

# Re-export get_db for use in Depends()
get_db = get_db

# Shared by every request so concurrent transmits of one document serialize
_transmit_locks = KeyedLocks()
_transport = build_transport(settings)


def get_settings() -> Settings:
    return settings


def get_transport() -> Transport:
    return _transport


def get_transmission_queue(
    app_settings: Settings = Depends(get_settings),
    transport: Transport = Depends(get_transport),
) -> TransmissionQueue:
    return TransmissionQueue(app_settings, transport, locks=_transmit_locks)


def get_archive_store(app_settings: Settings = Depends(get_settings)) -> ArchiveStore:
    return ArchiveStore(app_settings)


def get_response_correlator(app_settings: Settings = Depends(get_settings)) -> ResponseCorrelator:
    return ResponseCorrelator(app_settings)


def get_declaration_service(app_settings: Settings = Depends(get_settings)) -> DeclarationService:
    return DeclarationService(app_settings)


def get_exchange_engine(
    queue: TransmissionQueue = Depends(get_transmission_queue),
    archive: ArchiveStore = Depends(get_archive_store),
    correlator: ResponseCorrelator = Depends(get_response_correlator),
    declarations: DeclarationService = Depends(get_declaration_service),
) -> ExchangeEngine:
    return ExchangeEngine(queue, archive, correlator, declarations)


def require_admin(
    x_admin_token: str | None = Header(default=None),
    app_settings: Settings = Depends(get_settings),
) -> None:
    """Admin-only routes: the X-Admin-Token header must match the configured token."""
    if not app_settings.admin_token:
        raise UnlockNotPermittedError("Administrative actions are disabled (no admin token configured)")
    if x_admin_token != app_settings.admin_token:
        raise UnlockNotPermittedError("Invalid admin token")
