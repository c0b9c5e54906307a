"""Initial schema: declarations, exchange queue, incoming messages, archive, audit

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

DOCUMENT_TYPE = sa.Enum("PEB", "PIB", name="document_type")
DECLARATION_STATUS = sa.Enum(
    "DRAFT",
    "SUBMITTED",
    "SENT_TO_BROKER",
    "AUTHORITY_ACCEPTED",
    "AUTHORITY_REJECTED",
    "CLEARANCE_ISSUED",
    "COMPLETED",
    name="declaration_status",
)
TRANSPORT_MODE = sa.Enum("SEA", "AIR", "LAND", "RAIL", "MULTI", name="transport_mode")
LANE = sa.Enum("GREEN", "YELLOW", "RED", name="lane")
TRANSMISSION_STATUS = sa.Enum(
    "PENDING", "SENT", "RECEIVED", "ACCEPTED", "REJECTED", "ERROR", name="transmission_status"
)
INTEGRITY_STATUS = sa.Enum("VERIFIED", "UNVERIFIABLE", "FAILED", name="integrity_status")
ARCHIVE_DIRECTION = sa.Enum("OUTGOING", "INCOMING", name="archive_direction")


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "declarations",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("document_type", DOCUMENT_TYPE, nullable=False),
        sa.Column("document_number", sa.String(64), nullable=False),
        sa.Column("document_date", sa.Date, nullable=True),
        sa.Column("status", DECLARATION_STATUS, nullable=False, server_default="DRAFT"),
        sa.Column("customs_office_code", sa.String(16), nullable=True),
        sa.Column("declarant_npwp", sa.String(32), nullable=True),
        sa.Column("declarant_name", sa.String(255), nullable=True),
        sa.Column("declarant_address", sa.Text, nullable=True),
        sa.Column("counterparty_name", sa.String(255), nullable=True),
        sa.Column("counterparty_address", sa.Text, nullable=True),
        sa.Column("counterparty_country", sa.String(2), nullable=True),
        sa.Column("ppjk_npwp", sa.String(32), nullable=True),
        sa.Column("ppjk_name", sa.String(255), nullable=True),
        sa.Column("transport_mode", TRANSPORT_MODE, nullable=True),
        sa.Column("vessel_name", sa.String(255), nullable=True),
        sa.Column("voyage_number", sa.String(64), nullable=True),
        sa.Column("loading_port", sa.String(16), nullable=True),
        sa.Column("discharge_port", sa.String(16), nullable=True),
        sa.Column("destination_country", sa.String(2), nullable=True),
        sa.Column("origin_country", sa.String(2), nullable=True),
        sa.Column("bl_awb_number", sa.String(64), nullable=True),
        sa.Column("bl_awb_date", sa.Date, nullable=True),
        sa.Column("incoterm", sa.String(8), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("exchange_rate", sa.Float, nullable=True),
        sa.Column("total_packages", sa.Integer, nullable=True),
        sa.Column("package_unit", sa.String(8), nullable=True),
        sa.Column("gross_weight", sa.Float, nullable=True),
        sa.Column("net_weight", sa.Float, nullable=True),
        sa.Column("total_value", sa.Float, nullable=True),
        sa.Column("freight_value", sa.Float, nullable=True),
        sa.Column("insurance_value", sa.Float, nullable=True),
        sa.Column("total_value_idr", sa.Float, nullable=True),
        sa.Column("total_bm", sa.Float, nullable=True),
        sa.Column("total_ppn", sa.Float, nullable=True),
        sa.Column("total_pph", sa.Float, nullable=True),
        sa.Column("total_tax", sa.Float, nullable=True),
        sa.Column("locked", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_by", sa.String(200), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("xml_content", sa.Text, nullable=True),
        sa.Column("xml_hash", sa.String(64), nullable=True),
        sa.Column("message_id", sa.String(64), nullable=True),
        sa.Column("ceisa_reference", sa.String(64), nullable=True),
        sa.Column("registration_number", sa.String(64), nullable=True),
        sa.Column("registration_date", sa.Date, nullable=True),
        sa.Column("clearance_number", sa.String(64), nullable=True),
        sa.Column("clearance_date", sa.Date, nullable=True),
        sa.Column("lane", LANE, nullable=True),
        sa.Column("lane_reason", sa.Text, nullable=True),
        sa.Column("response_errors", sa.JSON, nullable=True),
        sa.Column("revision_of_id", UUID(as_uuid=True), sa.ForeignKey("declarations.id"), nullable=True),
        sa.Column("created_by", sa.String(200), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_declarations_document_number", "declarations", ["document_number"])

    op.create_table(
        "declaration_items",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "declaration_id",
            UUID(as_uuid=True),
            sa.ForeignKey("declarations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("item_number", sa.Integer, nullable=False),
        sa.Column("hs_code", sa.String(12), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("quantity", sa.Float, nullable=True),
        sa.Column("unit", sa.String(8), nullable=True),
        sa.Column("net_weight", sa.Float, nullable=True),
        sa.Column("gross_weight", sa.Float, nullable=True),
        sa.Column("unit_price", sa.Float, nullable=True),
        sa.Column("total_price", sa.Float, nullable=True),
        sa.Column("value", sa.Float, nullable=True),
        sa.Column("value_idr", sa.Float, nullable=True),
        sa.Column("country_of_origin", sa.String(2), nullable=True),
        sa.Column("package_type", sa.String(8), nullable=True),
        sa.Column("package_count", sa.Integer, nullable=True),
        sa.Column("bm_rate", sa.Float, nullable=True),
        sa.Column("ppn_rate", sa.Float, nullable=True),
        sa.Column("pph_rate", sa.Float, nullable=True),
        sa.Column("bm_amount", sa.Float, nullable=True),
        sa.Column("ppn_amount", sa.Float, nullable=True),
        sa.Column("pph_amount", sa.Float, nullable=True),
    )
    op.create_index("ix_declaration_items_declaration_id", "declaration_items", ["declaration_id"])

    op.create_table(
        "declaration_documents",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "declaration_id",
            UUID(as_uuid=True),
            sa.ForeignKey("declarations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("document_kind", sa.String(32), nullable=False),
        sa.Column("reference_number", sa.String(64), nullable=True),
        sa.Column("issued_date", sa.Date, nullable=True),
    )
    op.create_index("ix_declaration_documents_declaration_id", "declaration_documents", ["declaration_id"])

    op.create_table(
        "declaration_status_history",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "declaration_id",
            UUID(as_uuid=True),
            sa.ForeignKey("declarations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("from_status", sa.String(32), nullable=True),
        sa.Column("to_status", sa.String(32), nullable=False),
        sa.Column("actor", sa.String(200), nullable=True),
        sa.Column("reason", sa.Text, nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_declaration_status_history_declaration_id", "declaration_status_history", ["declaration_id"]
    )

    op.create_table(
        "xml_generations",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("declaration_id", UUID(as_uuid=True), nullable=False),
        sa.Column("document_type", DOCUMENT_TYPE, nullable=False),
        sa.Column("document_number", sa.String(64), nullable=False),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("message_id", sa.String(64), nullable=False),
        sa.Column("xml_hash", sa.String(64), nullable=False),
        sa.Column("file_path", sa.String(1024), nullable=True),
        sa.Column("file_size", sa.Integer, nullable=False),
        sa.Column("generated_by", sa.String(200), nullable=True),
        _created_at(),
    )
    op.create_index("ix_xml_generations_declaration_id", "xml_generations", ["declaration_id"])

    op.create_table(
        "document_hashes",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("declaration_id", UUID(as_uuid=True), nullable=False),
        sa.Column("document_type", DOCUMENT_TYPE, nullable=False),
        sa.Column("document_number", sa.String(64), nullable=False),
        sa.Column("hash_algorithm", sa.String(16), nullable=False, server_default="SHA-256"),
        sa.Column("xml_hash", sa.String(64), nullable=False),
        sa.Column("message_id", sa.String(64), nullable=False),
        sa.Column("signed_xml", sa.Text, nullable=False),
        _created_at(),
    )
    op.create_index("ix_document_hashes_declaration_id", "document_hashes", ["declaration_id"])

    op.create_table(
        "transmission_units",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("message_id", sa.String(64), nullable=False),
        sa.Column("document_type", DOCUMENT_TYPE, nullable=False),
        sa.Column("document_id", UUID(as_uuid=True), sa.ForeignKey("declarations.id"), nullable=False),
        sa.Column("document_number", sa.String(64), nullable=False),
        sa.Column("xml_content", sa.Text, nullable=False),
        sa.Column("xml_hash", sa.String(64), nullable=False),
        sa.Column("status", TRANSMISSION_STATUS, nullable=False, server_default="PENDING"),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="3"),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("errors", sa.JSON, nullable=True),
        sa.Column("error_class", sa.String(32), nullable=True),
        sa.Column("ceisa_reference", sa.String(64), nullable=True),
        sa.Column("response_xml", sa.Text, nullable=True),
        sa.Column("in_flight", sa.Boolean, nullable=False, server_default=sa.false()),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_transmission_units_message_id", "transmission_units", ["message_id"])
    op.create_index("ix_transmission_units_document_id", "transmission_units", ["document_id"])
    op.create_index("ix_transmission_units_document_number", "transmission_units", ["document_number"])
    op.create_index("ix_transmission_units_status", "transmission_units", ["status"])

    op.create_table(
        "incoming_messages",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("document_type", DOCUMENT_TYPE, nullable=False),
        sa.Column("document_id", UUID(as_uuid=True), nullable=False),
        sa.Column("document_number", sa.String(64), nullable=False),
        sa.Column("ceisa_reference", sa.String(64), nullable=True),
        sa.Column("response_xml", sa.Text, nullable=False),
        sa.Column("parsed_response", sa.JSON, nullable=False),
        sa.Column("status", TRANSMISSION_STATUS, nullable=False),
        sa.Column("error_groups", sa.JSON, nullable=True),
        sa.Column("integrity_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("integrity_status", INTEGRITY_STATUS, nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_incoming_messages_document_id", "incoming_messages", ["document_id"])
    op.create_index("ix_incoming_messages_document_number", "incoming_messages", ["document_number"])
    op.create_index("ix_incoming_messages_status", "incoming_messages", ["status"])
    op.create_index("ix_incoming_messages_received_at", "incoming_messages", ["received_at"])

    op.create_table(
        "archive_entries",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("message_id", sa.String(64), nullable=False),
        sa.Column("document_type", DOCUMENT_TYPE, nullable=False),
        sa.Column("document_number", sa.String(64), nullable=False),
        sa.Column("direction", ARCHIVE_DIRECTION, nullable=False),
        sa.Column("xml_content", sa.Text, nullable=False),
        sa.Column("xml_hash", sa.String(64), nullable=False),
        sa.Column("archive_path", sa.String(512), nullable=False),
        sa.Column("archived_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_archive_entries_message_id", "archive_entries", ["message_id"])
    op.create_index("ix_archive_entries_document_number", "archive_entries", ["document_number"])
    op.create_index("ix_archive_entries_archived_at", "archive_entries", ["archived_at"])

    op.create_table(
        "audit_events",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", UUID(as_uuid=True), nullable=True),
        sa.Column("entity_number", sa.String(64), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("actor", sa.String(200), nullable=True),
        sa.Column("actor_type", sa.String(50), nullable=True, server_default="system"),
        sa.Column("before_data", sa.JSON, nullable=True),
        sa.Column("after_data", sa.JSON, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        _created_at(),
    )
    op.create_index("ix_audit_events_entity_type", "audit_events", ["entity_type"])
    op.create_index("ix_audit_events_entity_id", "audit_events", ["entity_id"])
    op.create_index("ix_audit_events_action", "audit_events", ["action"])


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("archive_entries")
    op.drop_table("incoming_messages")
    op.drop_table("transmission_units")
    op.drop_table("document_hashes")
    op.drop_table("xml_generations")
    op.drop_table("declaration_status_history")
    op.drop_table("declaration_documents")
    op.drop_table("declaration_items")
    op.drop_table("declarations")
    for enum_name in (
        "archive_direction",
        "integrity_status",
        "transmission_status",
        "lane",
        "transport_mode",
        "declaration_status",
        "document_type",
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
