"""Canonical XML serialization of PEB / PIB declarations.

Every header block and item field is emitted in a fixed order from the field
tables below, numbers use fixed precision and missing values become empty
elements (text) or zeros (numbers), so the same declaration always yields
byte-identical XML.
"""

import enum
import functools
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable

from lxml import etree

from customs_edi.clock import as_utc
from customs_edi.exceptions import XmlSchemaError
from customs_edi.models.declaration import DocumentType

logger = logging.getLogger("edi.xml")

SCHEMA_PATH = Path(__file__).parent / "schemas" / "ceisa_declaration.xsd"
DEFAULT_VERSION = "2.0"

ROOT_TAGS = {
    DocumentType.PEB: "CEISA_PEB",
    DocumentType.PIB: "CEISA_PIB",
}

_INVALID_XML_CHARS = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f]")


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, enum.Enum):
        value = value.value
    return _INVALID_XML_CHARS.sub("", str(value)).strip()


def _fixed(places: int) -> Callable[[Any], str]:
    def fmt(value: Any) -> str:
        return f"{float(value or 0):.{places}f}"
    return fmt


_qty = _fixed(4)
_money = _fixed(2)
_rate = _fixed(4)
_idr = _fixed(0)


def _int(value: Any) -> str:
    return str(int(value or 0))


def _date(value: date | datetime | None) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def _npwp(value: str | None) -> str:
    return re.sub(r"[.\-\s]", "", value or "")


FieldSpec = tuple[str, str, Callable[[Any], str]]


HEADER_FIELDS: list[FieldSpec] = [
    ("DOCUMENT_NUMBER", "document_number", _text),
    ("DOCUMENT_DATE", "document_date", _date),
    ("CUSTOMS_OFFICE", "customs_office_code", _text),
]

DECLARANT_FIELDS: list[FieldSpec] = [
    ("NPWP", "declarant_npwp", _npwp),
    ("NAME", "declarant_name", _text),
    ("ADDRESS", "declarant_address", _text),
]

COUNTERPARTY_FIELDS: list[FieldSpec] = [
    ("NAME", "counterparty_name", _text),
    ("ADDRESS", "counterparty_address", _text),
    ("COUNTRY", "counterparty_country", _text),
]

PPJK_FIELDS: list[FieldSpec] = [
    ("NPWP", "ppjk_npwp", _npwp),
    ("NAME", "ppjk_name", _text),
]


def _transport_fields(document_type: DocumentType) -> list[FieldSpec]:
    country = (
        ("DESTINATION_COUNTRY", "destination_country", _text)
        if document_type == DocumentType.PEB
        else ("ORIGIN_COUNTRY", "origin_country", _text)
    )
    return [
        ("MODE", "transport_mode", _text),
        ("VESSEL_NAME", "vessel_name", _text),
        ("VOYAGE_NUMBER", "voyage_number", _text),
        ("LOADING_PORT", "loading_port", _text),
        ("DISCHARGE_PORT", "discharge_port", _text),
        country,
        ("BL_AWB_NUMBER", "bl_awb_number", _text),
        ("BL_AWB_DATE", "bl_awb_date", _date),
    ]


TRADE_TERMS_FIELDS: list[FieldSpec] = [
    ("INCOTERM", "incoterm", _text),
    ("CURRENCY", "currency", _text),
    ("EXCHANGE_RATE", "exchange_rate", _rate),
]


def _totals_fields(document_type: DocumentType) -> list[FieldSpec]:
    prefix = "FOB" if document_type == DocumentType.PEB else "CIF"
    return [
        ("TOTAL_PACKAGES", "total_packages", _int),
        ("PACKAGE_UNIT", "package_unit", _text),
        ("GROSS_WEIGHT", "gross_weight", _qty),
        ("NET_WEIGHT", "net_weight", _qty),
        (f"{prefix}_VALUE", "total_value", _money),
        ("FREIGHT_VALUE", "freight_value", _money),
        ("INSURANCE_VALUE", "insurance_value", _money),
        (f"{prefix}_IDR", "total_value_idr", _idr),
    ]


TAX_SUMMARY_FIELDS: list[FieldSpec] = [
    ("TOTAL_BM", "total_bm", _idr),
    ("TOTAL_PPN", "total_ppn", _idr),
    ("TOTAL_PPH", "total_pph", _idr),
    ("TOTAL_TAX", "total_tax", _idr),
]


def _item_fields(document_type: DocumentType) -> list[FieldSpec]:
    value_tag = "FOB_VALUE" if document_type == DocumentType.PEB else "CIF_VALUE"
    fields: list[FieldSpec] = [
        ("ITEM_NUMBER", "item_number", _int),
        ("HS_CODE", "hs_code", _text),
        ("DESCRIPTION", "description", _text),
        ("QUANTITY", "quantity", _qty),
        ("UNIT", "unit", _text),
        ("NET_WEIGHT", "net_weight", _qty),
        ("GROSS_WEIGHT", "gross_weight", _qty),
        ("UNIT_PRICE", "unit_price", _money),
        ("TOTAL_PRICE", "total_price", _money),
        (value_tag, "value", _money),
        ("VALUE_IDR", "value_idr", _idr),
        ("COUNTRY_OF_ORIGIN", "country_of_origin", _text),
        ("PACKAGE_TYPE", "package_type", _text),
        ("PACKAGE_COUNT", "package_count", _int),
    ]
    if document_type == DocumentType.PIB:
        fields += [
            ("BM_RATE", "bm_rate", _money),
            ("PPN_RATE", "ppn_rate", _money),
            ("PPH_RATE", "pph_rate", _money),
            ("BM_AMOUNT", "bm_amount", _idr),
            ("PPN_AMOUNT", "ppn_amount", _idr),
            ("PPH_AMOUNT", "pph_amount", _idr),
        ]
    return fields


@dataclass(frozen=True)
class MessageEnvelope:
    message_id: str
    timestamp: datetime | None = None
    version: str = DEFAULT_VERSION


def default_envelope(declaration, version: str = DEFAULT_VERSION) -> MessageEnvelope:
    """Envelope derived from the declaration itself (id and last change)."""
    document_type = DocumentType(declaration.document_type)
    reference = declaration.id if getattr(declaration, "id", None) else declaration.document_number
    stamp = getattr(declaration, "updated_at", None) or getattr(declaration, "created_at", None)
    return MessageEnvelope(
        message_id=f"{document_type.value}-{reference}",
        timestamp=as_utc(stamp),
        version=version,
    )


def _append_block(parent: etree._Element, tag: str, source: Any, fields: list[FieldSpec]) -> etree._Element:
    block = etree.SubElement(parent, tag)
    for child_tag, attr, fmt in fields:
        etree.SubElement(block, child_tag).text = fmt(getattr(source, attr, None))
    return block


def build_tree(declaration, envelope: MessageEnvelope | None = None) -> etree._Element:
    document_type = DocumentType(declaration.document_type)
    envelope = envelope or default_envelope(declaration)
    is_export = document_type == DocumentType.PEB

    root = etree.Element(ROOT_TAGS[document_type])

    message = etree.SubElement(root, "MESSAGE")
    etree.SubElement(message, "MESSAGE_ID").text = envelope.message_id
    etree.SubElement(message, "MESSAGE_TYPE").text = document_type.value
    etree.SubElement(message, "TIMESTAMP").text = (
        as_utc(envelope.timestamp).isoformat() if envelope.timestamp else ""
    )
    etree.SubElement(message, "VERSION").text = envelope.version

    _append_block(root, "HEADER", declaration, HEADER_FIELDS)
    _append_block(root, "EXPORTER" if is_export else "IMPORTER", declaration, DECLARANT_FIELDS)
    _append_block(root, "BUYER" if is_export else "SUPPLIER", declaration, COUNTERPARTY_FIELDS)
    _append_block(root, "PPJK", declaration, PPJK_FIELDS)
    _append_block(root, "TRANSPORT", declaration, _transport_fields(document_type))
    _append_block(root, "TRADE_TERMS", declaration, TRADE_TERMS_FIELDS)
    _append_block(root, "TOTALS", declaration, _totals_fields(document_type))
    if not is_export:
        _append_block(root, "TAX_SUMMARY", declaration, TAX_SUMMARY_FIELDS)

    items = etree.SubElement(root, "ITEMS")
    item_fields = _item_fields(document_type)
    for item in sorted(declaration.items, key=lambda i: i.item_number or 0):
        _append_block(items, "ITEM", item, item_fields)

    return root


@functools.lru_cache(maxsize=1)
def load_schema() -> etree.XMLSchema:
    return etree.XMLSchema(etree.parse(str(SCHEMA_PATH)))


def validate_tree(root: etree._Element) -> None:
    schema = load_schema()
    if not schema.validate(root):
        errors = [f"line {e.line}: {e.message}" for e in schema.error_log]
        logger.warning("Generated XML failed schema validation: %s", errors)
        raise XmlSchemaError("Generated XML does not match the CEISA declaration schema", errors)


def validate_xml(xml: str) -> None:
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(xml.encode("utf-8"), parser)
    except etree.XMLSyntaxError as e:
        raise XmlSchemaError(f"Malformed XML: {e}") from e
    validate_tree(root)


def canonicalize(
    declaration,
    envelope: MessageEnvelope | None = None,
    *,
    validate: bool = True,
) -> str:
    """Serialize a declaration (ORM object or any object with the same
    attributes and an ``items`` list) to canonical XML."""
    root = build_tree(declaration, envelope)
    if validate:
        validate_tree(root)
    return etree.tostring(
        root, xml_declaration=True, encoding="UTF-8", pretty_print=True
    ).decode("utf-8")


def read_message_id(xml: str) -> str | None:
    """MESSAGE/MESSAGE_ID of an outgoing message, if present."""
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    root = etree.fromstring(xml.encode("utf-8"), parser)
    value = root.findtext("MESSAGE/MESSAGE_ID")
    return value or None
