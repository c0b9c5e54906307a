"""Tests for canonical XML serialization of declarations."""

from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest
from lxml import etree

from customs_edi.edi import hashing
from customs_edi.edi.xml_mapper import MessageEnvelope, canonicalize, read_message_id, validate_xml
from customs_edi.exceptions import XmlSchemaError

ENVELOPE = MessageEnvelope(
    message_id="MSG-TEST-000001",
    timestamp=datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc),
)


def _item(**overrides):
    fields = dict(
        item_number=1, hs_code="09011190", description="Green coffee beans", quantity=100.0,
        unit="KGM", net_weight=100.0, gross_weight=120.0, unit_price=1.0, total_price=100.0,
        value=100.0, value_idr=1575000.0, country_of_origin="ID", package_type="CT",
        package_count=10, bm_rate=5.0, ppn_rate=11.0, pph_rate=2.5, bm_amount=78750.0,
        ppn_amount=181912.5, pph_amount=41343.75,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _declaration(document_type="PEB", items=None, **overrides):
    fields = dict(
        id=None, document_type=document_type, document_number="PEB-2026-0001",
        document_date=date(2026, 3, 1), customs_office_code="040300",
        declarant_npwp="01.234.567.8-901.000", declarant_name="PT Nusantara Ekspor",
        declarant_address="Jl. Pelabuhan 1", counterparty_name="Pacific Trading Ltd",
        counterparty_address="Singapore", counterparty_country="SG", ppjk_npwp=None, ppjk_name=None,
        transport_mode="SEA", vessel_name="MV Samudra", voyage_number="V-117", loading_port="IDTPP",
        discharge_port="SGSIN", destination_country="SG", origin_country="CN", bl_awb_number="BL-1",
        bl_awb_date=None, incoterm="FOB", currency="USD", exchange_rate=15750.0, total_packages=10,
        package_unit="CT", gross_weight=120.0, net_weight=100.0, total_value=100.0,
        freight_value=None, insurance_value=None, total_value_idr=1575000.0, total_bm=78750.0,
        total_ppn=181912.5, total_pph=41343.75, total_tax=302006.25,
    )
    fields.update(overrides)
    return SimpleNamespace(items=items if items is not None else [_item()], **fields)


class TestCanonicalize:
    def test_deterministic(self):
        """Identical field values always produce byte-identical XML and the same hash."""
        first = canonicalize(_declaration(), ENVELOPE)
        second = canonicalize(_declaration(), ENVELOPE)
        assert first == second
        assert hashing.compute_hash(first) == hashing.compute_hash(second)

    def test_item_field_change_changes_hash(self):
        """A single item field change changes the digest."""
        base = hashing.compute_hash(canonicalize(_declaration(), ENVELOPE))
        changed = canonicalize(_declaration(items=[_item(quantity=101.0)]), ENVELOPE)
        assert hashing.compute_hash(changed) != base

    def test_items_ordered_by_item_number(self):
        items = [_item(item_number=2, hs_code="22222222"), _item(item_number=1, hs_code="11111111")]
        root = etree.fromstring(canonicalize(_declaration(items=items), ENVELOPE).encode())
        assert [i.findtext("ITEM_NUMBER") for i in root.iter("ITEM")] == ["1", "2"]

    def test_free_text_is_escaped(self):
        """Markup characters in free text are escaped, and the text reads back intact."""
        xml = canonicalize(_declaration(declarant_name='A & B <Trading> "Co"'), ENVELOPE)
        assert "A &amp; B &lt;Trading&gt;" in xml
        root = etree.fromstring(xml.encode())
        assert root.findtext("EXPORTER/NAME") == 'A & B <Trading> "Co"'

    def test_fixed_precision_and_missing_values(self):
        """Numbers use fixed precision; missing numbers become zero and missing text empty."""
        root = etree.fromstring(canonicalize(_declaration(), ENVELOPE).encode())
        assert root.findtext("TOTALS/FOB_VALUE") == "100.00"
        assert root.findtext("TOTALS/NET_WEIGHT") == "100.0000"
        assert root.findtext("TOTALS/FREIGHT_VALUE") == "0.00"
        assert root.findtext("TRADE_TERMS/EXCHANGE_RATE") == "15750.0000"
        assert root.findtext("PPJK/NAME") in ("", None)

    def test_npwp_punctuation_removed(self):
        root = etree.fromstring(canonicalize(_declaration(), ENVELOPE).encode())
        assert root.findtext("EXPORTER/NPWP") == "012345678901000"

    def test_export_layout(self):
        root = etree.fromstring(canonicalize(_declaration(), ENVELOPE).encode())
        assert root.tag == "CEISA_PEB"
        assert root.find("BUYER") is not None
        assert root.find("TAX_SUMMARY") is None
        assert root.findtext("TRANSPORT/DESTINATION_COUNTRY") == "SG"
        assert root.findtext("ITEMS/ITEM/FOB_VALUE") == "100.00"

    def test_import_layout(self):
        """PIB messages carry importer/supplier blocks, CIF values and the tax summary."""
        declaration = _declaration("PIB", document_number="PIB-2026-0001", incoterm="CIF")
        root = etree.fromstring(canonicalize(declaration, ENVELOPE).encode())
        assert root.tag == "CEISA_PIB"
        assert root.find("IMPORTER") is not None
        assert root.find("SUPPLIER") is not None
        assert root.findtext("TRANSPORT/ORIGIN_COUNTRY") == "CN"
        assert root.findtext("TOTALS/CIF_VALUE") == "100.00"
        assert root.findtext("TAX_SUMMARY/TOTAL_TAX") == "302006"
        assert root.findtext("ITEMS/ITEM/BM_RATE") == "5.00"

    def test_message_block(self):
        xml = canonicalize(_declaration(), ENVELOPE)
        root = etree.fromstring(xml.encode())
        assert root.findtext("MESSAGE/MESSAGE_TYPE") == "PEB"
        assert root.findtext("MESSAGE/TIMESTAMP") == "2026-03-02T08:00:00+00:00"
        assert read_message_id(xml) == "MSG-TEST-000001"


class TestSchemaValidation:
    def test_generated_xml_is_schema_valid(self):
        xml = canonicalize(_declaration(), ENVELOPE)
        validate_xml(xml)

    def test_signed_xml_is_schema_valid(self):
        """The trailing SIGNATURE block is allowed by the schema."""
        xml = canonicalize(_declaration("PIB", document_number="PIB-1"), ENVELOPE)
        validate_xml(hashing.sign(xml, hashing.compute_hash(xml), ENVELOPE.timestamp))

    def test_structural_violation_rejected(self):
        xml = canonicalize(_declaration(), ENVELOPE).replace("<BUYER>", "<SELLER>").replace("</BUYER>", "</SELLER>")
        with pytest.raises(XmlSchemaError) as exc_info:
            validate_xml(xml)
        assert exc_info.value.errors

    def test_malformed_xml_rejected(self):
        with pytest.raises(XmlSchemaError):
            validate_xml("<CEISA_PEB><MESSAGE>")
