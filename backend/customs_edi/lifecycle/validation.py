"""Pre-submission validation gate.

Errors block submission; warnings are reported alongside and never block.
Header totals are compared against the line items but not corrected.
"""

from customs_edi.lifecycle.state_machine import is_locked
from customs_edi.models.declaration import Declaration, DeclarationStatus, DocumentType, TransportMode
from customs_edi.schemas.declaration import ValidationReport

UNIVERSAL_INCOTERMS = ("EXW", "FCA", "CPT", "CIP", "DAP", "DPU", "DDP")
SEA_ONLY_INCOTERMS = ("FOB", "CFR", "CIF", "FAS")

INCOTERM_TRANSPORT_RULES: dict[TransportMode, tuple[str, ...]] = {
    TransportMode.SEA: SEA_ONLY_INCOTERMS + UNIVERSAL_INCOTERMS,
    TransportMode.AIR: UNIVERSAL_INCOTERMS,
    TransportMode.LAND: UNIVERSAL_INCOTERMS,
    TransportMode.RAIL: UNIVERSAL_INCOTERMS,
    TransportMode.MULTI: UNIVERSAL_INCOTERMS,
}

ALWAYS_REQUIRED_DOCUMENTS = {
    "INVOICE": "Commercial Invoice",
    "PACKING_LIST": "Packing List",
}
TRANSPORT_DOCUMENTS = {
    TransportMode.SEA: ("BL", "Bill of Lading"),
    TransportMode.AIR: ("AWB", "Air Waybill"),
}

TOTALS_TOLERANCE = 0.01


def is_valid_incoterm_for_transport(transport_mode: TransportMode | str, incoterm: str) -> bool:
    allowed = INCOTERM_TRANSPORT_RULES.get(TransportMode(transport_mode), ())
    return incoterm.upper() in allowed


def incoterm_transport_error(transport_mode: TransportMode | str, incoterm: str) -> str | None:
    if is_valid_incoterm_for_transport(transport_mode, incoterm):
        return None
    mode = TransportMode(transport_mode).value
    if incoterm.upper() in SEA_ONLY_INCOTERMS:
        return f"Incoterm {incoterm} is only allowed for sea transport (SEA), not {mode}"
    return f"Incoterm {incoterm} is not valid for transport mode {mode}"


def missing_documents(declaration: Declaration) -> list[str]:
    present = {doc.document_kind.upper() for doc in declaration.supporting_documents}
    missing = [label for kind, label in ALWAYS_REQUIRED_DOCUMENTS.items() if kind not in present]
    if declaration.transport_mode is not None:
        required = TRANSPORT_DOCUMENTS.get(TransportMode(declaration.transport_mode))
        if required and required[0] not in present:
            missing.append(required[1])
    return missing


def _value_label(document_type: DocumentType) -> str:
    return "FOB" if DocumentType(document_type) == DocumentType.PEB else "CIF"


def _party_labels(document_type: DocumentType) -> tuple[str, str]:
    if DocumentType(document_type) == DocumentType.PEB:
        return "Exporter", "Buyer"
    return "Importer", "Supplier"


def _check_items(declaration: Declaration, errors: list[str]) -> None:
    if not declaration.items:
        errors.append("Declaration must contain at least one line item")
        return

    for item in declaration.items:
        prefix = f"Item {item.item_number}"
        if not (item.hs_code or "").strip():
            errors.append(f"{prefix}: HS code is required")
        if not (item.description or "").strip():
            errors.append(f"{prefix}: description is required")
        if not item.quantity or item.quantity <= 0:
            errors.append(f"{prefix}: quantity must be greater than 0")
        if not item.net_weight or item.net_weight <= 0:
            errors.append(f"{prefix}: net weight must be greater than 0 kg")
        elif (item.gross_weight or 0) < item.net_weight:
            errors.append(f"{prefix}: gross weight must be greater than or equal to net weight")


def _compare_total(label: str, header, items_total: float, warnings: list[str]) -> None:
    if abs((header or 0) - items_total) > TOTALS_TOLERANCE:
        warnings.append(
            f"Header {label} ({header or 0:g}) does not match the sum of line items ({items_total:g})"
        )


def _check_totals(declaration: Declaration, warnings: list[str]) -> None:
    items = declaration.items
    if not items:
        return
    _compare_total("net weight", declaration.net_weight, sum(i.net_weight or 0 for i in items), warnings)
    _compare_total("gross weight", declaration.gross_weight, sum(i.gross_weight or 0 for i in items), warnings)
    _compare_total(
        "total packages", declaration.total_packages, sum(i.package_count or 0 for i in items), warnings
    )
    _compare_total(
        f"{_value_label(declaration.document_type)} value",
        declaration.total_value,
        sum(i.value or 0 for i in items),
        warnings,
    )


def validate_for_submission(declaration: Declaration) -> ValidationReport:
    errors: list[str] = []
    warnings: list[str] = []

    if declaration.status != DeclarationStatus.DRAFT:
        errors.append(f"Only DRAFT declarations can be submitted (current status: {declaration.status.value})")
    if is_locked(declaration):
        errors.append("Document is locked and read-only")

    _check_items(declaration, errors)

    if not declaration.total_value:
        errors.append(f"Total {_value_label(declaration.document_type)} value must not be zero")

    declarant, counterparty = _party_labels(declaration.document_type)
    if not (declaration.declarant_npwp or declaration.declarant_name):
        errors.append(f"{declarant} NPWP or name is required")
    if not declaration.counterparty_name:
        errors.append(f"{counterparty} name is required")
    if not declaration.customs_office_code:
        errors.append("Customs office code is required")

    for label in missing_documents(declaration):
        errors.append(f"Missing required document: {label}")

    if declaration.transport_mode and declaration.incoterm:
        message = incoterm_transport_error(declaration.transport_mode, declaration.incoterm)
        if message:
            errors.append(message)

    if not declaration.loading_port or not declaration.discharge_port:
        warnings.append("Loading and discharge ports should be specified")
    if not declaration.incoterm:
        warnings.append("Incoterm is not specified")
    if not declaration.currency:
        warnings.append("Currency is not specified")
    if not declaration.exchange_rate:
        warnings.append("Exchange rate is not specified")

    _check_totals(declaration, warnings)

    return ValidationReport(is_valid=not errors, errors=errors, warnings=warnings)
