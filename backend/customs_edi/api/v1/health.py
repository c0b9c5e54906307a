import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from customs_edi import __version__
from customs_edi.config import Settings
from customs_edi.dependencies import get_db, get_exchange_engine, get_settings, get_transport
from customs_edi.edi.connector import ExchangeEngine
from customs_edi.edi.transport import Transport
from customs_edi.schemas.exchange import EngineStatistics
from customs_edi.schemas.health import HealthResponse

logger = logging.getLogger("edi.health")

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    app_settings: Settings = Depends(get_settings),
    transport: Transport = Depends(get_transport),
) -> HealthResponse:
    db_status = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        db_status = "unhealthy"

    ceisa = await transport.check_connection()

    return HealthResponse(
        status="healthy" if db_status == "healthy" and ceisa.connected else "degraded",
        database=db_status,
        ceisa_mode="simulation" if app_settings.ceisa_simulation_mode else "live",
        ceisa=ceisa,
        timestamp=datetime.now(timezone.utc),
        environment=app_settings.environment,
        version=__version__,
    )


@router.get("/metrics", response_model=EngineStatistics)
async def get_metrics(
    db: AsyncSession = Depends(get_db),
    engine: ExchangeEngine = Depends(get_exchange_engine),
) -> EngineStatistics:
    """Queue, incoming-message and archive counters."""
    return await engine.get_statistics(db)
