"""Parsing and classification of CEISA response messages.

A response is decoded into a typed ``ExportResponse`` (PEB) or
``ImportResponse`` (PIB), classified into a transmission status, and checked
against its embedded digest when one is present.
"""

import logging
import time
from datetime import datetime

from lxml import etree
from pydantic import TypeAdapter

from customs_edi.clock import utcnow
from customs_edi.edi import hashing
from customs_edi.edi.error_codes import lookup_code
from customs_edi.exceptions import ResponseParseError
from customs_edi.models.declaration import DocumentType, Lane
from customs_edi.models.transmission import IntegrityStatus, TransmissionStatus
from customs_edi.schemas.exchange import (
    ExportResponse,
    FieldError,
    ImportResponse,
    ParsedResponse,
)

logger = logging.getLogger("edi.correlator")

SUCCESS_CODES = frozenset({"00", "SUCCESS"})
PENDING_CODES = frozenset({"PENDING", "IN_QUEUE"})

parsed_response_adapter: TypeAdapter = TypeAdapter(ParsedResponse)


def _xml_parser() -> etree.XMLParser:
    return etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)


def _load(xml: str) -> etree._Element:
    if not xml or not xml.strip():
        raise ResponseParseError("Empty response message")
    try:
        return etree.fromstring(xml.strip().encode("utf-8"), _xml_parser())
    except etree.XMLSyntaxError as e:
        raise ResponseParseError(f"Malformed response XML: {e}") from e


def _find(node: etree._Element, tag: str) -> str | None:
    for element in node.iter(tag):
        text = (element.text or "").strip()
        return text or None
    return None


def _registry_error(code: str, field: str | None, message: str | None, value: str | None) -> FieldError:
    mapping = lookup_code(code) or {"field": "unknown", "message": f"Unknown error code: {code}"}
    return FieldError(
        code=code,
        field=field or mapping["field"],
        message=message or mapping["message"],
        value=value,
    )


def parse_errors(root: etree._Element) -> list[FieldError]:
    errors = []
    for block in root.iter("ERROR"):
        errors.append(_registry_error(
            _find(block, "CODE") or "UNKNOWN",
            _find(block, "FIELD"),
            _find(block, "MESSAGE"),
            _find(block, "VALUE"),
        ))

    single_code = _find(root, "ERROR_CODE")
    if single_code and not any(e.code == single_code for e in errors):
        errors.append(_registry_error(
            single_code,
            _find(root, "ERROR_FIELD"),
            _find(root, "ERROR_MESSAGE"),
            None,
        ))
    return errors


def _lane_reason(root: etree._Element) -> str | None:
    reason = _find(root, "LANE_REASON")
    if reason:
        return reason
    parts = []
    risk_level = _find(root, "RISK_LEVEL")
    profile_match = _find(root, "PROFILE_MATCH")
    if risk_level:
        parts.append(f"Risk Level: {risk_level}")
    if profile_match:
        parts.append(f"Profile Match: {profile_match}")
    return "; ".join(parts) or None


def extract_lane_reason(xml: str) -> str | None:
    return _lane_reason(_load(xml))


def _resolve_document_type(root: etree._Element, hint: DocumentType | str | None) -> DocumentType:
    explicit = _find(root, "DOCUMENT_TYPE")
    if explicit:
        try:
            resolved = DocumentType(explicit.upper())
        except ValueError as e:
            raise ResponseParseError(f"Unknown document type in response: {explicit}") from e
        if hint is not None and DocumentType(hint) != resolved:
            logger.warning("Response declares %s but caller expected %s", resolved.value, DocumentType(hint).value)
        return resolved
    if hint is not None:
        return DocumentType(hint)
    if _find(root, "NPE_NUMBER"):
        return DocumentType.PEB
    if _find(root, "SPPB_NUMBER") or _find(root, "LANE"):
        return DocumentType.PIB
    raise ResponseParseError("Cannot determine whether the response is for a PEB or a PIB")


def _lane(value: str | None) -> Lane | None:
    if not value:
        return None
    try:
        return Lane(value.upper())
    except ValueError:
        logger.warning("Ignoring unknown lane value %r", value)
        return None


def parse_response(xml: str, document_type: DocumentType | str | None = None) -> ExportResponse | ImportResponse:
    """Decode a CEISA response into its document-specific response type.

    The document type comes from an explicit DOCUMENT_TYPE element, then the
    caller's hint, then the kind of issuance number present.
    """
    root = _load(xml)
    resolved = _resolve_document_type(root, document_type)
    response_code = _find(root, "RESPONSE_CODE") or "UNKNOWN"

    common = dict(
        success=response_code.upper() in SUCCESS_CODES,
        response_code=response_code,
        response_message=_find(root, "RESPONSE_MESSAGE") or "",
        reference_number=_find(root, "REFERENCE_NUMBER"),
        registration_number=_find(root, "REGISTRATION_NUMBER"),
        registration_date=_find(root, "REGISTRATION_DATE"),
        errors=parse_errors(root),
        raw_xml=xml,
    )
    if resolved == DocumentType.PEB:
        return ExportResponse(
            **common,
            npe_number=_find(root, "NPE_NUMBER"),
            npe_date=_find(root, "NPE_DATE"),
        )
    return ImportResponse(
        **common,
        sppb_number=_find(root, "SPPB_NUMBER"),
        sppb_date=_find(root, "SPPB_DATE"),
        lane=_lane(_find(root, "LANE")),
        lane_reason=_lane_reason(root),
    )


def classify_response(parsed: ExportResponse | ImportResponse) -> TransmissionStatus:
    """Map a parsed response to a transmission status.

    Precedence: a successful response resolves to its richest signal
    (issuance number, then registration number) regardless of any errors it
    also carries.
    """
    if parsed.success:
        if parsed.issuance_number:
            return TransmissionStatus.ACCEPTED
        if parsed.registration_number:
            return TransmissionStatus.RECEIVED
        return TransmissionStatus.SENT

    if (parsed.response_code or "").upper() in PENDING_CODES:
        return TransmissionStatus.PENDING

    if parsed.errors:
        return TransmissionStatus.REJECTED

    if parsed.issuance_number or parsed.registration_number:
        # Unsuccessful code but clearance fields present; treated as a rejection
        # until the authority's semantics for this combination are confirmed.
        logger.warning(
            "Response %s is unsuccessful (code=%s) but carries registration/clearance numbers; classifying as REJECTED",
            parsed.reference_number, parsed.response_code,
        )
        return TransmissionStatus.REJECTED

    return TransmissionStatus.ERROR


def check_integrity(xml: str) -> IntegrityStatus:
    result = hashing.verify_signed(xml)
    if result is None:
        return IntegrityStatus.UNVERIFIABLE
    if result.is_valid:
        return IntegrityStatus.VERIFIED
    logger.warning(
        "Response integrity check failed (embedded=%s computed=%s)",
        result.original_hash, result.computed_hash,
    )
    return IntegrityStatus.FAILED


def verify_response_integrity(xml: str, require_signature: bool = False) -> bool:
    """True unless the embedded digest mismatches. Unsigned responses pass
    unless ``require_signature`` is set."""
    status = check_integrity(xml)
    if status == IntegrityStatus.UNVERIFIABLE:
        return not require_signature
    return status == IntegrityStatus.VERIFIED


def generate_error_summary(errors: list[FieldError]) -> str:
    if not errors:
        return "No errors"
    by_field: dict[str, list[str]] = {}
    for error in errors:
        by_field.setdefault(error.field, []).append(error.message)
    return "\n".join(f"{field}: {', '.join(messages)}" for field, messages in by_field.items())


def build_mock_response(
    document_type: DocumentType | str,
    success: bool = True,
    *,
    registration_number: str | None = None,
    lane: Lane | str | None = None,
    errors: list[FieldError] | None = None,
    issue_clearance: bool = True,
    response_code: str | None = None,
    signed: bool = False,
    now: datetime | None = None,
) -> str:
    """Build an authority-style response message for simulation and tests."""
    document_type = DocumentType(document_type)
    now = now or utcnow()
    stamp = int(time.time() * 1000)
    today = now.date().isoformat()

    root = etree.Element("CEISA_RESPONSE")

    def add(tag: str, text: str) -> None:
        etree.SubElement(root, tag).text = text

    add("DOCUMENT_TYPE", document_type.value)
    if not success:
        add("RESPONSE_CODE", response_code or "ERROR")
        add("RESPONSE_MESSAGE", "Document validation failed")
        add("REFERENCE_NUMBER", f"CEISA-{stamp}")
        if errors:
            errors_el = etree.SubElement(root, "ERRORS")
            for error in errors:
                error_el = etree.SubElement(errors_el, "ERROR")
                etree.SubElement(error_el, "CODE").text = error.code
                etree.SubElement(error_el, "FIELD").text = error.field
                etree.SubElement(error_el, "MESSAGE").text = error.message
                if error.value:
                    etree.SubElement(error_el, "VALUE").text = error.value
    else:
        add("RESPONSE_CODE", response_code or "00")
        add("RESPONSE_MESSAGE", "Document accepted successfully")
        add("REFERENCE_NUMBER", f"CEISA-{stamp}")
        add("REGISTRATION_NUMBER", registration_number or f"REG-{stamp}")
        add("REGISTRATION_DATE", today)
        if document_type == DocumentType.PIB:
            add("LANE", Lane(lane or Lane.GREEN).value)
            add("LANE_REASON", "Auto-assigned based on risk profile")
        if issue_clearance:
            prefix = "NPE" if document_type == DocumentType.PEB else "SPPB"
            add(f"{prefix}_NUMBER", f"{prefix}-{stamp}")
            add(f"{prefix}_DATE", today)

    xml = etree.tostring(root, xml_declaration=True, encoding="UTF-8", pretty_print=True).decode("utf-8")
    if signed:
        xml = hashing.sign(xml, hashing.compute_hash(xml), now)
    return xml
