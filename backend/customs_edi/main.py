import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from customs_edi import __version__
from customs_edi.api.router import api_router
from customs_edi.config import settings
from customs_edi.exceptions import (
    AlreadyLockedError,
    ArchiveEntryNotFoundError,
    CustomsEdiError,
    DeclarationNotFoundError,
    DocumentLockedError,
    ImmutableRecordError,
    IncomingMessageNotFoundError,
    InvalidTransitionError,
    MessageAlreadyProcessedError,
    QueueOperationError,
    ResponseParseError,
    TransmissionUnitNotFoundError,
    UnlockNotPermittedError,
    XmlSchemaError,
)
from customs_edi.middleware.logging import RequestLoggingMiddleware

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: dict[type[CustomsEdiError], int] = {
    DeclarationNotFoundError: 404,
    ArchiveEntryNotFoundError: 404,
    TransmissionUnitNotFoundError: 404,
    IncomingMessageNotFoundError: 404,
    DocumentLockedError: 409,
    AlreadyLockedError: 409,
    InvalidTransitionError: 409,
    QueueOperationError: 409,
    MessageAlreadyProcessedError: 409,
    ImmutableRecordError: 409,
    ResponseParseError: 400,
    XmlSchemaError: 400,
    UnlockNotPermittedError: 403,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Initialize Sentry if DSN is configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.environment,
            )
            logger.info("Sentry initialized (env=%s)", settings.environment)
        except Exception as e:
            logger.warning("Failed to initialize Sentry: %s", e)

    logger.info(
        "Starting customs EDI gateway (env=%s, ceisa=%s)",
        settings.environment,
        "simulation" if settings.ceisa_simulation_mode else "live",
    )
    yield
    logger.info("Shutting down customs EDI gateway")


app = FastAPI(
    title="Customs EDI Gateway",
    description="PEB/PIB declaration lifecycle, CEISA exchange and message archive",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(CustomsEdiError)
async def customs_edi_error_handler(request: Request, exc: CustomsEdiError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in _STATUS_BY_ERROR.items() if isinstance(exc, error_type)),
        500,
    )
    if status_code >= 500:
        logger.error("Unhandled %s on %s: %s", exc.code, request.url.path, exc.message)
    content = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, XmlSchemaError) and exc.errors:
        content["errors"] = exc.errors
    return JSONResponse(status_code=status_code, content=content)


app.include_router(api_router, prefix="/api")
