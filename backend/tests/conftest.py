from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from customs_edi.clock import FixedClock
from customs_edi.config import Settings
from customs_edi.edi.archive import ArchiveStore
from customs_edi.edi.connector import ExchangeEngine
from customs_edi.edi.incoming import ResponseCorrelator
from customs_edi.edi.outgoing import TransmissionQueue
from customs_edi.edi.transport import SimulatedTransport
from customs_edi.lifecycle.service import DeclarationService
from customs_edi.models.base import Base
# Import all models so they register with Base.metadata for create_all
import customs_edi.models  # noqa: F401
from customs_edi.models.declaration import DocumentType
from customs_edi.schemas.declaration import DeclarationCreate

# In-memory SQLite shared across the connections of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite://"

ADMIN_TOKEN = "test-admin-token"


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(test_engine):
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL,
        edi_storage_dir=str(tmp_path / "edi"),
        archive_root="/edi/archive",
        ceisa_simulation_mode=True,
        ceisa_timeout_seconds=5.0,
        ceisa_max_retries=3,
        ceisa_backoff_base_minutes=1,
        admin_token=ADMIN_TOKEN,
        sentry_dsn="",
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc))


@pytest.fixture
def transport() -> SimulatedTransport:
    return SimulatedTransport()


@pytest.fixture
def queue(test_settings, transport, clock) -> TransmissionQueue:
    return TransmissionQueue(test_settings, transport, clock=clock)


@pytest.fixture
def archive_store(test_settings, clock) -> ArchiveStore:
    return ArchiveStore(test_settings, clock=clock)


@pytest.fixture
def correlator(test_settings, clock) -> ResponseCorrelator:
    return ResponseCorrelator(test_settings, clock=clock)


@pytest.fixture
def declaration_service(test_settings, clock) -> DeclarationService:
    return DeclarationService(test_settings, clock=clock)


@pytest.fixture
def exchange_engine(queue, archive_store, correlator, declaration_service) -> ExchangeEngine:
    return ExchangeEngine(queue, archive_store, correlator, declaration_service)


def declaration_payload(document_type: str = "PEB", document_number: str = "PEB-2026-0001", **overrides) -> dict:
    """A declaration that passes the submission gate: one line item, FOB/CIF value 100."""
    payload = {
        "document_type": document_type,
        "document_number": document_number,
        "document_date": "2026-03-01",
        "customs_office_code": "040300",
        "declarant_npwp": "01.234.567.8-901.000",
        "declarant_name": "PT Nusantara Ekspor",
        "declarant_address": "Jl. Pelabuhan 1, Jakarta",
        "counterparty_name": "Pacific Trading Ltd",
        "counterparty_address": "1 Harbour Road, Singapore",
        "counterparty_country": "SG",
        "transport_mode": "SEA",
        "vessel_name": "MV Samudra",
        "voyage_number": "V-117",
        "loading_port": "IDTPP",
        "discharge_port": "SGSIN",
        "destination_country": "SG",
        "origin_country": "SG",
        "bl_awb_number": "BL-778812",
        "incoterm": "FOB",
        "currency": "USD",
        "exchange_rate": 15750.0,
        "total_packages": 10,
        "package_unit": "CT",
        "gross_weight": 120.0,
        "net_weight": 100.0,
        "total_value": 100.0,
        "created_by": "operator",
        "items": [
            {
                "item_number": 1,
                "hs_code": "09011190",
                "description": "Green coffee beans, not roasted",
                "quantity": 100.0,
                "unit": "KGM",
                "net_weight": 100.0,
                "gross_weight": 120.0,
                "unit_price": 1.0,
                "total_price": 100.0,
                "value": 100.0,
                "country_of_origin": "ID",
                "package_type": "CT",
                "package_count": 10,
            }
        ],
        "supporting_documents": [
            {"document_kind": "INVOICE", "reference_number": "INV-001"},
            {"document_kind": "PACKING_LIST", "reference_number": "PL-001"},
            {"document_kind": "BL", "reference_number": "BL-778812"},
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def payload():
    """Builder for API request bodies; same data as the service-level factories."""
    return declaration_payload


@pytest.fixture
def make_draft(db_session, declaration_service):
    """Factory creating a DRAFT declaration through the lifecycle service."""

    async def _make(document_type: DocumentType | str = DocumentType.PEB, **overrides):
        document_type = DocumentType(document_type)
        overrides.setdefault("document_number", f"{document_type.value}-2026-0001")
        data = DeclarationCreate(**declaration_payload(document_type.value, **overrides))
        return await declaration_service.create(db_session, data, actor="operator")

    return _make


@pytest.fixture
def make_submitted(db_session, declaration_service, make_draft):
    """Factory creating a declaration that is already SUBMITTED and locked."""

    async def _make(document_type: DocumentType | str = DocumentType.PEB, **overrides):
        declaration = await make_draft(document_type, **overrides)
        result = await declaration_service.submit(db_session, declaration.id, actor="operator")
        assert result.success, result.errors
        return declaration

    return _make


@pytest.fixture
async def client(db_session, test_settings, transport):
    from customs_edi.dependencies import get_db, get_settings, get_transport
    from customs_edi.main import app

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_transport] = lambda: transport

    transport_ = ASGITransport(app=app)
    async with AsyncClient(transport=transport_, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
