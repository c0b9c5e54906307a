"""CEISA error-code registry and field-level error grouping.

Errors returned by the authority reference a field name and a code. For
display they are enriched with a human-readable label, a severity (codes
starting with ``W`` are warnings, ``I`` informational) and a remediation
suggestion, then grouped by form section in a fixed order.
"""

import re

from customs_edi.schemas.exchange import ErrorGroup, FieldError, ParsedError

ERROR_CODES: dict[str, dict[str, str]] = {
    "E001": {"field": "exporter_npwp", "message": "Invalid NPWP format"},
    "E002": {"field": "importer_npwp", "message": "Invalid NPWP format"},
    "E003": {"field": "hs_code", "message": "Invalid HS Code"},
    "E004": {"field": "hs_code", "message": "HS Code not found in tariff database"},
    "E005": {"field": "quantity", "message": "Quantity must be greater than 0"},
    "E006": {"field": "fob_value", "message": "FOB value is required"},
    "E007": {"field": "cif_value", "message": "CIF value is required"},
    "E008": {"field": "customs_office_code", "message": "Invalid customs office code"},
    "E009": {"field": "port_code", "message": "Invalid port code"},
    "E010": {"field": "currency_code", "message": "Invalid currency code"},
    "E011": {"field": "exchange_rate", "message": "Exchange rate must be greater than 0"},
    "E012": {"field": "incoterm_code", "message": "Invalid incoterm code"},
    "E013": {"field": "transport_mode", "message": "Invalid transport mode"},
    "E014": {"field": "bl_awb_number", "message": "B/L or AWB number is required"},
    "E015": {"field": "document_number", "message": "Duplicate document number"},
    "E016": {"field": "registration_date", "message": "Document already registered"},
    "E017": {"field": "api_number", "message": "Invalid API number"},
    "E018": {"field": "ppjk_npwp", "message": "Invalid PPJK NPWP"},
    "E019": {"field": "country_of_origin", "message": "Invalid country code"},
    "E020": {"field": "net_weight", "message": "Net weight must be greater than 0"},
    "E021": {"field": "gross_weight", "message": "Gross weight must be greater than net weight"},
    "E022": {"field": "total_packages", "message": "Package count must be greater than 0"},
    "E023": {"field": "items", "message": "At least one item is required"},
    "E024": {"field": "xml_hash", "message": "XML integrity verification failed"},
    "E025": {"field": "signature", "message": "Digital signature verification failed"},
}

FIELD_LABELS: dict[str, str] = {
    # PEB
    "exporter_npwp": "Exporter NPWP",
    "exporter_name": "Exporter Name",
    "exporter_address": "Exporter Address",
    "buyer_name": "Buyer Name",
    "buyer_address": "Buyer Address",
    "buyer_country": "Buyer Country",
    "loading_port_code": "Loading Port",
    "destination_port_code": "Destination Port",
    "destination_country": "Destination Country",
    "vessel_name": "Vessel Name",
    "voyage_number": "Voyage Number",
    "fob_value": "FOB Value",
    "npe_number": "NPE Number",
    # PIB
    "importer_npwp": "Importer NPWP",
    "importer_name": "Importer Name",
    "importer_address": "Importer Address",
    "importer_api": "Importer API",
    "api_number": "API Number",
    "supplier_name": "Supplier Name",
    "supplier_address": "Supplier Address",
    "supplier_country": "Supplier Country",
    "discharge_port_code": "Discharge Port",
    "loading_country": "Loading Country",
    "cif_value": "CIF Value",
    "sppb_number": "SPPB Number",
    # Common
    "ppjk_npwp": "PPJK NPWP",
    "ppjk_name": "PPJK Name",
    "bl_awb_number": "B/L or AWB Number",
    "bl_awb_date": "B/L or AWB Date",
    "hs_code": "HS Code",
    "product_description": "Product Description",
    "quantity": "Quantity",
    "quantity_unit": "Quantity Unit",
    "unit_price": "Unit Price",
    "total_price": "Total Price",
    "net_weight": "Net Weight",
    "gross_weight": "Gross Weight",
    "country_of_origin": "Country of Origin",
    "packaging_code": "Packaging Code",
    "package_count": "Package Count",
    "customs_office_code": "Customs Office",
    "port_code": "Port Code",
    "incoterm_code": "Incoterm",
    "currency_code": "Currency",
    "exchange_rate": "Exchange Rate",
    "transport_mode": "Transport Mode",
    "document_number": "Document Number",
    "registration_date": "Registration Date",
    "registration_number": "Registration Number",
    "total_packages": "Total Packages",
    "items": "Items",
    "xml_hash": "XML Hash",
    "signature": "Digital Signature",
    # Tax
    "bm_rate": "BM Rate",
    "bm_amount": "BM Amount",
    "ppn_rate": "PPN Rate",
    "ppn_amount": "PPN Amount",
    "pph_rate": "PPh Rate",
    "pph_amount": "PPh Amount",
    "total_tax": "Total Tax",
}

_SECTION_FIELDS: dict[str, tuple[str, ...]] = {
    "Document": ("document_number", "registration_number", "registration_date"),
    "Exporter Information": ("exporter_npwp", "exporter_name", "exporter_address"),
    "Importer Information": (
        "importer_npwp", "importer_name", "importer_address", "importer_api", "api_number",
    ),
    "Buyer Information": ("buyer_name", "buyer_address", "buyer_country"),
    "Supplier Information": ("supplier_name", "supplier_address", "supplier_country"),
    "PPJK Information": ("ppjk_npwp", "ppjk_name"),
    "Transport Details": (
        "loading_port_code", "discharge_port_code", "destination_port_code",
        "destination_country", "loading_country", "vessel_name", "voyage_number",
        "transport_mode", "bl_awb_number", "bl_awb_date",
    ),
    "Trade Terms": ("incoterm_code", "currency_code", "exchange_rate"),
    "Items": ("items",),
    "Item Details": (
        "hs_code", "product_description", "quantity", "unit_price",
        "net_weight", "gross_weight", "country_of_origin",
    ),
    "Packaging": ("total_packages", "package_count", "packaging_code"),
    "Valuation": ("fob_value", "cif_value"),
    "Tax Calculation": (
        "bm_rate", "bm_amount", "ppn_rate", "ppn_amount", "pph_rate", "pph_amount", "total_tax",
    ),
    "Customs": ("customs_office_code",),
    "Security": ("xml_hash", "signature"),
}

FIELD_SECTIONS: dict[str, str] = {
    field: section for section, fields in _SECTION_FIELDS.items() for field in fields
}

SECTION_ORDER: list[str] = [*_SECTION_FIELDS, "Other"]

ERROR_SUGGESTIONS: dict[str, str] = {
    "E001": "NPWP must be 15 digits in format XX.XXX.XXX.X-XXX.XXX",
    "E002": "NPWP must be 15 digits in format XX.XXX.XXX.X-XXX.XXX",
    "E003": "HS Code must be 6-10 digits, check the tariff database",
    "E004": "Verify the HS Code in the official BTKI (Buku Tarif Kepabeanan Indonesia)",
    "E005": "Enter a quantity greater than 0",
    "E006": "FOB value is required for export declarations",
    "E007": "CIF value is required for import declarations",
    "E008": "Select a valid customs office from the master data",
    "E009": "Select a valid port from the master data",
    "E010": "Select a valid currency code (e.g., USD, EUR, CNY)",
    "E011": "Enter a positive exchange rate value",
    "E012": "Select a valid incoterm (e.g., FOB, CIF, EXW)",
    "E013": "Select transport mode: SEA, AIR, LAND, RAIL, or MULTIMODAL",
    "E014": "Enter the Bill of Lading or Air Waybill number",
    "E015": "This document number already exists in the system",
    "E016": "Document with this registration already processed",
    "E017": "Verify API number format and validity with customs",
    "E018": "Verify PPJK NPWP and license validity",
    "E019": "Use valid 2-letter ISO country code",
    "E020": "Net weight must be greater than 0 kg",
    "E021": "Gross weight should be greater than or equal to net weight",
    "E022": "Enter at least 1 package",
    "E023": "Add at least one item to the declaration",
    "E024": "Document may have been modified. Please regenerate the XML",
    "E025": "Digital signature verification failed. Please re-sign the document",
}

CRITICAL_CODES = frozenset({
    "E001", "E002", "E003", "E004", "E005", "E006", "E007",
    "E008", "E009", "E010", "E012", "E013", "E014", "E015",
    "E020", "E021", "E022", "E023", "E024", "E025",
})

_ITEM_INDEX_RE = re.compile(r"items?\[(\d+)\]\.?", re.IGNORECASE)


def lookup_code(code: str) -> dict[str, str] | None:
    return ERROR_CODES.get(code)


def base_field(field: str) -> str:
    """``items[2].hs_code`` -> ``hs_code``; ``items[2]`` -> ``items``."""
    stripped = _ITEM_INDEX_RE.sub("", field)
    return stripped or "items"


def extract_item_number(field: str) -> int | None:
    match = _ITEM_INDEX_RE.search(field)
    return int(match.group(1)) if match else None


def get_field_label(field: str) -> str:
    return FIELD_LABELS.get(base_field(field), field)


def get_field_section(field: str) -> str:
    return FIELD_SECTIONS.get(base_field(field), "Other")


def get_error_suggestion(code: str) -> str | None:
    return ERROR_SUGGESTIONS.get(code)


def severity_for(code: str) -> str:
    if code.startswith("W"):
        return "warning"
    if code.startswith("I"):
        return "info"
    return "error"


def parse_error(error: FieldError) -> ParsedError:
    return ParsedError(
        code=error.code,
        field=error.field,
        message=error.message,
        value=error.value,
        field_label=get_field_label(error.field),
        severity=severity_for(error.code),
        suggestion=get_error_suggestion(error.code),
        item_number=extract_item_number(error.field),
    )


def group_errors(errors: list[FieldError]) -> list[ErrorGroup]:
    """Group errors by form section, sections in SECTION_ORDER."""
    groups: dict[str, list[ParsedError]] = {}
    for error in errors:
        groups.setdefault(get_field_section(error.field), []).append(parse_error(error))

    return [ErrorGroup(section=s, errors=groups[s]) for s in SECTION_ORDER if s in groups]


def is_critical_error(error: FieldError) -> bool:
    return error.code in CRITICAL_CODES


def format_errors_for_display(errors: list[FieldError]) -> list[str]:
    lines = []
    for error in errors:
        line = f"{get_field_label(error.field)}: {error.message}"
        if error.value:
            line += f" (Value: {error.value})"
        suggestion = get_error_suggestion(error.code)
        if suggestion:
            line += f" - {suggestion}"
        lines.append(line)
    return lines


def count_errors_by_severity(errors: list[FieldError]) -> dict[str, int]:
    counts = {"error": 0, "warning": 0, "info": 0}
    for error in errors:
        counts[severity_for(error.code)] += 1
    return counts
