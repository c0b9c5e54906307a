"""Transports that deliver a signed message to CEISA and return the raw reply.

Transports raise ``TransmissionFailure`` with an error class; they never
decide about retries. The queue owns that.
"""

import asyncio
import logging
import time

import httpx

from customs_edi.clock import utcnow
from customs_edi.config import Settings
from customs_edi.edi.responses import build_mock_response
from customs_edi.exceptions import TransmissionErrorClass, TransmissionFailure
from customs_edi.models.transmission import TransmissionUnit
from customs_edi.schemas.exchange import FieldError
from customs_edi.schemas.health import CeisaConnectionStatus

logger = logging.getLogger("edi.transport")


class Transport:
    async def send(self, unit: TransmissionUnit) -> str:
        raise NotImplementedError

    async def check_connection(self) -> CeisaConnectionStatus:
        raise NotImplementedError


class HttpTransport(Transport):
    """POSTs the signed XML to the CEISA endpoint over HTTPS."""

    def __init__(self, settings: Settings, client_transport: httpx.AsyncBaseTransport | None = None):
        self.endpoint_url = settings.ceisa_endpoint_url
        self.timeout = settings.ceisa_timeout_seconds
        self.health_timeout = settings.ceisa_health_timeout_seconds
        self.client_transport = client_transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self.client_transport)

    async def send(self, unit: TransmissionUnit) -> str:
        headers = {
            "Content-Type": "application/xml; charset=utf-8",
            "X-Message-ID": unit.message_id,
            "X-Document-Type": unit.document_type.value,
        }
        try:
            async with self._client(self.timeout) as client:
                resp = await client.post(
                    self.endpoint_url, content=unit.xml_content.encode("utf-8"), headers=headers
                )
        except httpx.TimeoutException as e:
            raise TransmissionFailure(TransmissionErrorClass.TIMEOUT, f"CEISA request timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransmissionFailure(TransmissionErrorClass.NETWORK, f"CEISA unreachable: {e}") from e

        if resp.status_code >= 500:
            raise TransmissionFailure(
                TransmissionErrorClass.SERVER, f"CEISA server error: HTTP {resp.status_code}"
            )
        if resp.status_code >= 400 and "<CEISA_RESPONSE" not in resp.text:
            raise TransmissionFailure(
                TransmissionErrorClass.VALIDATION, f"CEISA refused the message: HTTP {resp.status_code}"
            )
        return resp.text

    async def check_connection(self) -> CeisaConnectionStatus:
        """Probe the endpoint. Any answer below HTTP 500 counts as reachable."""
        started = time.monotonic()
        http_status = None
        error = None
        try:
            async with self._client(self.health_timeout) as client:
                resp = await client.get(self.endpoint_url)
            http_status = resp.status_code
            if http_status >= 500:
                error = f"CEISA server error: HTTP {http_status}"
        except httpx.TimeoutException:
            error = "Connection to CEISA timed out"
        except httpx.TransportError as e:
            error = f"CEISA unreachable: {e}"

        if error:
            logger.warning("CEISA connection check failed: %s", error)
        return CeisaConnectionStatus(
            connected=error is None,
            mode="live",
            http_status=http_status,
            response_time_ms=round((time.monotonic() - started) * 1000),
            error=error,
            checked_at=utcnow(),
        )


class SimulatedTransport(Transport):
    """Answers locally with a generated CEISA response.

    ``failure_class`` makes every call fail with that class instead.
    """

    def __init__(
        self,
        *,
        success: bool = True,
        failure_class: TransmissionErrorClass | str | None = None,
        lane: str | None = "GREEN",
        issue_clearance: bool = True,
        latency_seconds: float = 0.0,
    ):
        self.success = success
        self.failure_class = TransmissionErrorClass(failure_class) if failure_class else None
        self.lane = lane
        self.issue_clearance = issue_clearance
        self.latency_seconds = latency_seconds
        self.calls: list[str] = []

    @classmethod
    def from_settings(cls, settings: Settings) -> "SimulatedTransport":
        return cls(
            success=settings.simulation_success,
            failure_class=settings.simulation_failure_class,
            lane=settings.simulation_lane,
        )

    async def send(self, unit: TransmissionUnit) -> str:
        self.calls.append(unit.message_id)
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)
        if self.failure_class is not None:
            raise TransmissionFailure(self.failure_class, f"Simulated {self.failure_class.value} failure")

        logger.info("Simulated CEISA reply for %s (%s)", unit.message_id, unit.document_number)
        errors = None
        if not self.success:
            errors = [FieldError(code="E003", field="items[1].hs_code", message="Invalid HS Code")]
        return build_mock_response(
            unit.document_type,
            self.success,
            lane=self.lane,
            errors=errors,
            issue_clearance=self.issue_clearance,
        )

    async def check_connection(self) -> CeisaConnectionStatus:
        # A simulated network outage also shows up as a lost connection
        down = self.failure_class in (TransmissionErrorClass.NETWORK, TransmissionErrorClass.TIMEOUT)
        return CeisaConnectionStatus(
            connected=not down,
            mode="simulation",
            http_status=None if down else 200,
            response_time_ms=round(self.latency_seconds * 1000),
            error=f"Simulated {self.failure_class.value} failure" if down else None,
            checked_at=utcnow(),
        )


def build_transport(settings: Settings) -> Transport:
    if settings.ceisa_simulation_mode:
        return SimulatedTransport.from_settings(settings)
    return HttpTransport(settings)
