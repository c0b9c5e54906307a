"""Tests for XML hashing, signing and digest extraction."""

import re
import string
from datetime import datetime, timezone

from customs_edi.edi import hashing

SAMPLE = """<?xml version='1.0' encoding='UTF-8'?>
<CEISA_PEB>
  <MESSAGE>
    <MESSAGE_ID>MSG-1</MESSAGE_ID>
  </MESSAGE>
  <!-- generated -->
  <HEADER>
    <DOCUMENT_NUMBER>PEB-1</DOCUMENT_NUMBER>
  </HEADER>
</CEISA_PEB>
"""

STAMP = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


class TestNormalization:
    def test_prolog_comments_and_whitespace_removed(self):
        """Prolog, comments and inter-tag whitespace do not survive normalization."""
        normalized = hashing.normalize_xml(SAMPLE)
        assert normalized.startswith("<CEISA_PEB><MESSAGE>")
        assert "<!--" not in normalized
        assert "\n" not in normalized

    def test_cosmetic_reformatting_keeps_hash(self):
        """Reindenting the same document does not change its digest."""
        compact = SAMPLE.replace("\n  ", "\n").replace("  <", "<")
        assert hashing.compute_hash(compact) == hashing.compute_hash(SAMPLE)

    def test_content_change_changes_hash(self):
        """Changing a single value changes the digest."""
        altered = SAMPLE.replace("PEB-1", "PEB-2")
        assert hashing.compute_hash(altered) != hashing.compute_hash(SAMPLE)

    def test_hash_is_sha256_hex(self):
        digest = hashing.compute_hash(SAMPLE)
        assert len(digest) == 64
        assert all(c in "0123456789abcdef" for c in digest)


class TestSignature:
    def test_signature_inserted_before_root_close(self):
        """The SIGNATURE block sits immediately before the root closing tag."""
        signed = hashing.sign(SAMPLE, "abc123", STAMP)
        assert "<HASH_VALUE>abc123</HASH_VALUE>" in signed
        assert signed.index("</SIGNATURE>") < signed.index("</CEISA_PEB>")
        assert signed.rstrip().endswith("</CEISA_PEB>")

    def test_strip_signature_restores_original(self):
        """strip_signature is the exact inverse of sign."""
        signed = hashing.sign(SAMPLE, hashing.compute_hash(SAMPLE), STAMP)
        assert hashing.strip_signature(signed) == SAMPLE

    def test_extract_digest(self):
        digest = hashing.compute_hash(SAMPLE)
        signed = hashing.sign(SAMPLE, digest, STAMP)
        assert hashing.extract_digest(signed) == digest
        assert hashing.has_signature(signed)
        assert hashing.extract_digest(SAMPLE) is None

    def test_verify_signed_round_trip(self):
        """A freshly signed message verifies against its embedded digest."""
        signed = hashing.sign(SAMPLE, hashing.compute_hash(SAMPLE), STAMP)
        result = hashing.verify_signed(signed)
        assert result is not None
        assert result.is_valid
        assert result.original_hash == result.computed_hash

    def test_verify_signed_detects_tampering(self):
        signed = hashing.sign(SAMPLE, hashing.compute_hash(SAMPLE), STAMP)
        tampered = signed.replace("PEB-1", "PEB-9")
        result = hashing.verify_signed(tampered)
        assert result is not None
        assert not result.is_valid
        assert result.original_hash != result.computed_hash

    def test_verify_signed_without_signature(self):
        assert hashing.verify_signed(SAMPLE) is None

    def test_content_digest_ignores_signature(self):
        """The digest of a signed message equals the digest of its payload."""
        digest = hashing.compute_hash(SAMPLE)
        signed = hashing.sign(SAMPLE, digest, STAMP)
        assert hashing.content_digest(signed) == digest

    def test_content_digest_ignores_signature_layout(self):
        """A reformatted signature block is still removed before hashing."""
        digest = hashing.compute_hash(SAMPLE)
        signed = hashing.sign(SAMPLE, digest, STAMP)
        minified = re.sub(r">\s+<", "><", signed)
        crlf = signed.replace("\n", "\r\n")
        assert "<SIGNATURE><HASH_ALGORITHM>" in minified
        assert hashing.content_digest(minified) == digest
        assert hashing.content_digest(crlf) == digest
        assert hashing.verify_signed(minified).is_valid
        assert hashing.verify_signed(crlf).is_valid

    def test_missing_root_close_appends_block(self):
        """Degraded path: without a closing tag the block is appended at the end."""
        fragment = "<CEISA_PEB><HEADER>x"
        signed = hashing.sign(fragment, "deadbeef", STAMP)
        assert signed.startswith(fragment)
        assert signed.endswith("</SIGNATURE>\n")


class TestMessageId:
    def test_format(self):
        message_id = hashing.generate_message_id()
        prefix, stamp, suffix = message_id.split("-")
        assert prefix == "MSG"
        assert set(stamp) <= set(string.digits + string.ascii_uppercase)
        assert len(suffix) == 6

    def test_unique(self):
        ids = {hashing.generate_message_id() for _ in range(50)}
        assert len(ids) == 50
