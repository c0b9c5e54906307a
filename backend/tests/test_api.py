"""HTTP-level tests for the declaration, EDI, archive, audit and admin routers."""

import uuid

import pytest

from customs_edi.edi.responses import build_mock_response
from customs_edi.exceptions import TransmissionErrorClass

BASE = "/api/v1"


async def _create(client, payload, **overrides):
    resp = await client.post(f"{BASE}/declarations", json=payload(**overrides))
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _submitted(client, payload, **overrides):
    declaration = await _create(client, payload, **overrides)
    resp = await client.post(f"{BASE}/declarations/{declaration['id']}/submit", params={"actor": "operator"})
    assert resp.json()["success"], resp.text
    return declaration


# ── Declarations ──


class TestDeclarationEndpoints:
    @pytest.mark.asyncio
    async def test_create_and_get(self, client, payload):
        created = await _create(client, payload)
        assert created["status"] == "DRAFT"
        assert created["locked"] is False
        assert created["items"][0]["hs_code"] == "09011190"

        resp = await client.get(f"{BASE}/declarations/{created['id']}")
        assert resp.status_code == 200
        assert resp.json()["document_number"] == "PEB-2026-0001"

    @pytest.mark.asyncio
    async def test_unknown_declaration(self, client):
        resp = await client.get(f"{BASE}/declarations/{uuid.uuid4()}")
        assert resp.status_code == 404
        assert resp.json()["code"] == "DECLARATION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_list(self, client, payload):
        await _create(client, payload)
        await _create(client, payload, document_type="PIB", document_number="PIB-2026-0001")

        resp = await client.get(f"{BASE}/declarations", params={"document_type": "PIB"})
        data = resp.json()
        assert data["total"] == 1
        assert data["declarations"][0]["document_type"] == "PIB"

    @pytest.mark.asyncio
    async def test_patch_draft(self, client, payload):
        created = await _create(client, payload)
        resp = await client.patch(f"{BASE}/declarations/{created['id']}", json={"vessel_name": "MV Baru"})
        assert resp.status_code == 200
        assert resp.json()["vessel_name"] == "MV Baru"

    @pytest.mark.asyncio
    async def test_validation_report(self, client, payload):
        created = await _create(client, payload, supporting_documents=[])
        resp = await client.get(f"{BASE}/declarations/{created['id']}/validation")
        data = resp.json()
        assert data["is_valid"] is False
        assert "Missing required document: Packing List" in data["errors"]

    @pytest.mark.asyncio
    async def test_xml_preview(self, client, payload):
        created = await _create(client, payload)
        resp = await client.post(f"{BASE}/declarations/{created['id']}/xml")
        data = resp.json()
        assert data["generation"]["version"] == 1
        assert data["xml_content"].startswith("<?xml")
        assert "<SIGNATURE>" in data["xml_content"]

    @pytest.mark.asyncio
    async def test_submit_refused_when_invalid(self, client, payload):
        created = await _create(client, payload, items=[])
        resp = await client.post(f"{BASE}/declarations/{created['id']}/submit")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is False
        assert data["status"] == "DRAFT"
        assert "Declaration must contain at least one line item" in data["errors"]

    @pytest.mark.asyncio
    async def test_locked_declaration_returns_409(self, client, payload):
        declaration = await _submitted(client, payload)

        resp = await client.patch(f"{BASE}/declarations/{declaration['id']}", json={"vessel_name": "X"})
        assert resp.status_code == 409
        assert resp.json() == {"detail": "Document is locked and read-only", "code": "DOCUMENT_LOCKED"}

        resp = await client.delete(f"{BASE}/declarations/{declaration['id']}")
        assert resp.status_code == 409

        resp = await client.post(f"{BASE}/declarations/{declaration['id']}/lock")
        assert resp.status_code == 409
        assert resp.json()["code"] == "ALREADY_LOCKED"

    @pytest.mark.asyncio
    async def test_verify_submitted_xml(self, client, payload):
        declaration = await _submitted(client, payload)

        resp = await client.get(f"{BASE}/declarations/{declaration['id']}/xml/verify")
        assert resp.status_code == 200
        data = resp.json()
        assert data["is_valid"] is True
        assert data["stored_hash"] == data["computed_hash"]

    @pytest.mark.asyncio
    async def test_delete_draft(self, client, payload):
        created = await _create(client, payload)
        resp = await client.delete(f"{BASE}/declarations/{created['id']}")
        assert resp.status_code == 204
        assert (await client.get(f"{BASE}/declarations/{created['id']}")).status_code == 404

    @pytest.mark.asyncio
    async def test_history(self, client, payload):
        declaration = await _submitted(client, payload)
        resp = await client.get(f"{BASE}/declarations/{declaration['id']}/history")
        assert {h["to_status"] for h in resp.json()} == {"DRAFT", "SUBMITTED"}


# ── Send and responses ──


class TestExchangeEndpoints:
    @pytest.mark.asyncio
    async def test_send(self, client, payload):
        declaration = await _submitted(client, payload)

        resp = await client.post(f"{BASE}/declarations/{declaration['id']}/send")
        assert resp.status_code == 200
        data = resp.json()
        assert data["declaration_status"] == "CLEARANCE_ISSUED"
        assert data["transmission"]["status"] == "ACCEPTED"

        units = (await client.get(f"{BASE}/edi/queue/document/{declaration['id']}")).json()
        assert [u["status"] for u in units] == ["ACCEPTED"]

        incoming = (await client.get(f"{BASE}/edi/incoming", params={"document_id": declaration["id"]})).json()
        assert len(incoming) == 1
        registration = (await client.get(f"{BASE}/edi/incoming/{incoming[0]['id']}/registration")).json()
        assert registration["issuance_number"].startswith("NPE-")

    @pytest.mark.asyncio
    async def test_send_draft_is_conflict(self, client, payload):
        created = await _create(client, payload)
        resp = await client.post(f"{BASE}/declarations/{created['id']}/send")
        assert resp.status_code == 409
        assert resp.json()["code"] == "INVALID_TRANSITION"

    @pytest.mark.asyncio
    async def test_external_response(self, client, payload, transport):
        """A reply delivered out of band is correlated and applied."""
        transport.failure_class = TransmissionErrorClass.NETWORK
        declaration = await _submitted(client, payload)
        sent = (await client.post(f"{BASE}/declarations/{declaration['id']}/send")).json()
        assert sent["declaration_status"] == "SENT_TO_BROKER"
        assert sent["transmission"]["retry_allowed"] is True

        retry_items = (await client.get(f"{BASE}/edi/queue/retry-items")).json()
        assert retry_items == []

        resp = await client.post(f"{BASE}/edi/responses", json={
            "document_type": "PEB",
            "document_id": declaration["id"],
            "document_number": declaration["document_number"],
            "response_xml": build_mock_response("PEB", True),
        })
        assert resp.status_code == 200
        assert resp.json()["declaration_status"] == "CLEARANCE_ISSUED"

    @pytest.mark.asyncio
    async def test_malformed_response_is_bad_request(self, client, payload):
        declaration = await _create(client, payload)
        resp = await client.post(f"{BASE}/edi/responses", json={
            "document_type": "PEB",
            "document_id": declaration["id"],
            "document_number": declaration["document_number"],
            "response_xml": "<CEISA_RESPONSE><RESPONSE_CODE>",
        })
        assert resp.status_code == 400
        assert resp.json()["code"] == "RESPONSE_PARSE_ERROR"

    @pytest.mark.asyncio
    async def test_simulate_response(self, client, payload, transport):
        transport.failure_class = TransmissionErrorClass.TIMEOUT
        declaration = await _submitted(client, payload, document_type="PIB", document_number="PIB-2026-0001")
        await client.post(f"{BASE}/declarations/{declaration['id']}/send")

        resp = await client.post(
            f"{BASE}/edi/declarations/{declaration['id']}/simulate-response",
            json={"success": True, "lane": "RED"},
        )
        data = resp.json()
        assert data["declaration_status"] == "CLEARANCE_ISSUED"
        assert data["registration"]["lane"] == "RED"

    @pytest.mark.asyncio
    async def test_incoming_requires_filter(self, client):
        resp = await client.get(f"{BASE}/edi/incoming")
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_queue_maintenance(self, client, payload):
        declaration = await _submitted(client, payload)
        await client.post(f"{BASE}/declarations/{declaration['id']}/send")

        stats = (await client.get(f"{BASE}/edi/queue/stats")).json()
        assert stats["accepted"] == 1
        assert (await client.post(f"{BASE}/edi/queue/retry")).json() == []
        assert (await client.post(f"{BASE}/edi/queue/clear-completed")).json() == {"deleted": 1}
        assert (await client.get(f"{BASE}/edi/queue")).json()["total"] == 0

    @pytest.mark.asyncio
    async def test_unknown_unit(self, client):
        resp = await client.get(f"{BASE}/edi/queue/{uuid.uuid4()}")
        assert resp.status_code == 404
        assert resp.json()["code"] == "TRANSMISSION_UNIT_NOT_FOUND"


# ── Archive ──


class TestArchiveEndpoints:
    @pytest.mark.asyncio
    async def test_search_verify_download(self, client, payload):
        declaration = await _submitted(client, payload)
        await client.post(f"{BASE}/declarations/{declaration['id']}/send")

        data = (await client.get(f"{BASE}/archive", params={"document_number": "peb-2026"})).json()
        assert data["total"] == 2
        outgoing = next(e for e in data["entries"] if e["direction"] == "OUTGOING")

        verify = (await client.get(f"{BASE}/archive/{outgoing['id']}/verify")).json()
        assert verify["is_valid"] is True

        resp = await client.get(f"{BASE}/archive/{outgoing['id']}/download")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/xml")
        assert resp.headers["content-disposition"] == 'attachment; filename="PEB_PEB-2026-0001_OUTGOING.xml"'
        assert "<SIGNATURE>" in resp.text

    @pytest.mark.asyncio
    async def test_unknown_entry(self, client):
        resp = await client.get(f"{BASE}/archive/{uuid.uuid4()}")
        assert resp.status_code == 404
        assert resp.json()["code"] == "ARCHIVE_ENTRY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_purge_requires_admin(self, client, test_settings):
        resp = await client.post(f"{BASE}/archive/purge")
        assert resp.status_code == 403

        resp = await client.post(f"{BASE}/archive/purge", headers={"X-Admin-Token": test_settings.admin_token})
        assert resp.status_code == 200
        assert resp.json()["deleted"] == 0


# ── Admin and audit ──


class TestAdminEndpoints:
    @pytest.mark.asyncio
    async def test_unlock_requires_token(self, client, payload, test_settings):
        declaration = await _submitted(client, payload)
        url = f"{BASE}/admin/declarations/{declaration['id']}/unlock"
        body = {"reason": "wrong vessel name", "actor": "supervisor"}

        resp = await client.post(url, json=body)
        assert resp.status_code == 403
        assert resp.json()["code"] == "UNLOCK_NOT_PERMITTED"

        resp = await client.post(url, json=body, headers={"X-Admin-Token": "nope"})
        assert resp.status_code == 403

        resp = await client.post(url, json=body, headers={"X-Admin-Token": test_settings.admin_token})
        assert resp.status_code == 200
        assert resp.json()["locked"] is False
        assert resp.json()["status"] == "SUBMITTED"

    @pytest.mark.asyncio
    async def test_unlock_requires_reason(self, client, payload, test_settings):
        declaration = await _submitted(client, payload)
        resp = await client.post(
            f"{BASE}/admin/declarations/{declaration['id']}/unlock",
            json={"reason": "", "actor": "supervisor"},
            headers={"X-Admin-Token": test_settings.admin_token},
        )
        assert resp.status_code == 422


class TestAuditEndpoints:
    @pytest.mark.asyncio
    async def test_events_and_stats(self, client, payload):
        declaration = await _submitted(client, payload)

        events = (await client.get(f"{BASE}/audit/events", params={"entity_id": declaration["id"]})).json()
        assert {e["action"] for e in events["events"]} == {"CREATE", "GENERATE_XML", "SUBMIT", "LOCK"}

        stats = (await client.get(f"{BASE}/audit/stats")).json()
        assert stats["events_by_entity_type"] == {"DECLARATION": 4}
