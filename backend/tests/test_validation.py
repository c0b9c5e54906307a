"""Tests for the pre-submission validation gate."""

from types import SimpleNamespace

import pytest

from customs_edi.lifecycle.validation import (
    incoterm_transport_error,
    is_valid_incoterm_for_transport,
    missing_documents,
    validate_for_submission,
)
from customs_edi.models.declaration import DeclarationStatus


def _doc(kind):
    return SimpleNamespace(document_kind=kind, reference_number=f"{kind}-1")


def _item(**overrides):
    fields = dict(
        item_number=1, hs_code="09011190", description="Green coffee beans", quantity=100.0,
        net_weight=100.0, gross_weight=120.0, package_count=10, value=100.0,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _declaration(document_type="PEB", items=None, documents=("INVOICE", "PACKING_LIST", "BL"), **overrides):
    fields = dict(
        id=None, document_type=document_type, status=DeclarationStatus.DRAFT, locked=False,
        customs_office_code="040300", declarant_npwp="01.234.567.8-901.000",
        declarant_name="PT Nusantara Ekspor", counterparty_name="Pacific Trading Ltd",
        transport_mode="SEA", loading_port="IDTPP", discharge_port="SGSIN", incoterm="FOB",
        currency="USD", exchange_rate=15750.0, total_packages=10, gross_weight=120.0,
        net_weight=100.0, total_value=100.0,
    )
    fields.update(overrides)
    return SimpleNamespace(
        items=items if items is not None else [_item()],
        supporting_documents=[_doc(k) for k in documents],
        **fields,
    )


class TestValidDeclaration:
    def test_clean_declaration_passes(self):
        report = validate_for_submission(_declaration())
        assert report.is_valid
        assert report.errors == []
        assert report.warnings == []


class TestErrors:
    @pytest.mark.parametrize("status", [s for s in DeclarationStatus if s != DeclarationStatus.DRAFT])
    def test_only_drafts_submit(self, status):
        report = validate_for_submission(_declaration(status=status))
        assert not report.is_valid
        assert f"Only DRAFT declarations can be submitted (current status: {status.value})" in report.errors

    def test_locked_flag(self):
        report = validate_for_submission(_declaration(locked=True))
        assert "Document is locked and read-only" in report.errors

    def test_no_items(self):
        report = validate_for_submission(_declaration(items=[]))
        assert "Declaration must contain at least one line item" in report.errors

    def test_item_field_errors(self):
        item = _item(hs_code=" ", description="", quantity=0, net_weight=0)
        report = validate_for_submission(_declaration(items=[item]))
        assert report.errors == [
            "Item 1: HS code is required",
            "Item 1: description is required",
            "Item 1: quantity must be greater than 0",
            "Item 1: net weight must be greater than 0 kg",
        ]

    def test_gross_below_net(self):
        report = validate_for_submission(_declaration(items=[_item(gross_weight=90.0)], gross_weight=90.0))
        assert "Item 1: gross weight must be greater than or equal to net weight" in report.errors

    def test_zero_total_value_labelled_per_type(self):
        """The value is FOB for exports and CIF for imports."""
        peb = validate_for_submission(_declaration(total_value=0))
        pib = validate_for_submission(_declaration("PIB", total_value=0))
        assert "Total FOB value must not be zero" in peb.errors
        assert "Total CIF value must not be zero" in pib.errors

    def test_parties_required(self):
        peb = validate_for_submission(_declaration(declarant_npwp=None, declarant_name=None, counterparty_name=""))
        assert "Exporter NPWP or name is required" in peb.errors
        assert "Buyer name is required" in peb.errors

        pib = validate_for_submission(_declaration("PIB", declarant_npwp=None, declarant_name=None, counterparty_name=None))
        assert "Importer NPWP or name is required" in pib.errors
        assert "Supplier name is required" in pib.errors

    def test_npwp_alone_is_enough(self):
        report = validate_for_submission(_declaration(declarant_name=None))
        assert report.is_valid

    def test_customs_office_required(self):
        report = validate_for_submission(_declaration(customs_office_code=None))
        assert "Customs office code is required" in report.errors

    def test_missing_documents(self):
        report = validate_for_submission(_declaration(documents=("PACKING_LIST",)))
        assert "Missing required document: Commercial Invoice" in report.errors
        assert "Missing required document: Bill of Lading" in report.errors

    def test_sea_incoterm_on_air_transport(self):
        report = validate_for_submission(
            _declaration(transport_mode="AIR", incoterm="CIF", documents=("INVOICE", "PACKING_LIST", "AWB"))
        )
        assert report.errors == ["Incoterm CIF is only allowed for sea transport (SEA), not AIR"]


class TestWarnings:
    def test_missing_optional_header_fields(self):
        report = validate_for_submission(
            _declaration(loading_port=None, incoterm=None, currency=None, exchange_rate=None)
        )
        assert report.is_valid
        assert report.warnings == [
            "Loading and discharge ports should be specified",
            "Incoterm is not specified",
            "Currency is not specified",
            "Exchange rate is not specified",
        ]

    def test_totals_mismatch_warns_without_correcting(self):
        """Header totals that disagree with the items warn; the header keeps its value."""
        declaration = _declaration(net_weight=150.0, total_packages=12)
        report = validate_for_submission(declaration)

        assert report.is_valid
        assert "Header net weight (150) does not match the sum of line items (100)" in report.warnings
        assert "Header total packages (12) does not match the sum of line items (10)" in report.warnings
        assert declaration.net_weight == 150.0

    def test_totals_within_tolerance(self):
        report = validate_for_submission(_declaration(total_value=100.005))
        assert report.warnings == []


class TestIncotermRules:
    @pytest.mark.parametrize("incoterm", ["FOB", "CFR", "CIF", "FAS", "EXW", "DDP"])
    def test_sea_allows_everything(self, incoterm):
        assert is_valid_incoterm_for_transport("SEA", incoterm)

    @pytest.mark.parametrize("mode", ["AIR", "LAND", "RAIL", "MULTI"])
    def test_sea_only_terms_rejected_elsewhere(self, mode):
        assert not is_valid_incoterm_for_transport(mode, "FOB")
        assert is_valid_incoterm_for_transport(mode, "fca")

    def test_unknown_incoterm(self):
        assert incoterm_transport_error("SEA", "XYZ") == "Incoterm XYZ is not valid for transport mode SEA"
        assert incoterm_transport_error("SEA", "CIF") is None


class TestMissingDocuments:
    def test_transport_document_depends_on_mode(self):
        assert missing_documents(_declaration(transport_mode="AIR", documents=("INVOICE", "PACKING_LIST"))) == [
            "Air Waybill"
        ]
        assert missing_documents(_declaration(transport_mode="LAND", documents=("INVOICE", "PACKING_LIST"))) == []

    def test_kind_matching_is_case_insensitive(self):
        assert missing_documents(_declaration(documents=("invoice", "packing_list", "bl"))) == []
