import pytest

from customs_edi.exceptions import TransmissionErrorClass


@pytest.mark.asyncio
async def test_health_endpoint_returns_200(client):
    response = await client.get("/api/v1/health")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_health_endpoint_has_required_fields(client):
    response = await client.get("/api/v1/health")
    data = response.json()
    assert "status" in data
    assert "database" in data
    assert "ceisa_mode" in data
    assert "ceisa" in data
    assert "timestamp" in data
    assert "environment" in data
    assert "version" in data


@pytest.mark.asyncio
async def test_health_endpoint_reports_version(client):
    response = await client.get("/api/v1/health")
    data = response.json()
    assert data["version"] == "0.1.0"
    assert data["database"] == "healthy"


@pytest.mark.asyncio
async def test_health_endpoint_reports_simulation_mode(client):
    response = await client.get("/api/v1/health")
    assert response.json()["ceisa_mode"] == "simulation"


@pytest.mark.asyncio
async def test_metrics_endpoint_starts_empty(client):
    response = await client.get("/api/v1/metrics")
    assert response.status_code == 200
    data = response.json()
    assert data["queue"]["total"] == 0
    assert data["incoming"]["total"] == 0
    assert data["archive"]["total"] == 0


@pytest.mark.asyncio
async def test_request_id_is_echoed(client):
    response = await client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
    assert response.headers["X-Request-ID"] == "abc123"


@pytest.mark.asyncio
async def test_request_id_generated_when_missing(client):
    response = await client.get("/api/v1/health")
    assert len(response.headers["X-Request-ID"]) == 8


@pytest.mark.asyncio
async def test_health_endpoint_reports_ceisa_connection(client):
    response = await client.get("/api/v1/health")
    ceisa = response.json()["ceisa"]
    assert ceisa["connected"] is True
    assert ceisa["mode"] == "simulation"
    assert ceisa["http_status"] == 200


@pytest.mark.asyncio
async def test_health_endpoint_degraded_when_ceisa_unreachable(client, transport):
    transport.failure_class = TransmissionErrorClass.NETWORK
    response = await client.get("/api/v1/health")
    data = response.json()
    assert response.status_code == 200
    assert data["status"] == "degraded"
    assert data["database"] == "healthy"
    assert data["ceisa"]["connected"] is False
    assert data["ceisa"]["error"] == "Simulated NETWORK failure"
