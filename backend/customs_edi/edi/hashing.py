"""SHA-256 hashing and signature blocks for EDI XML messages.

The digest is computed over a normalized form of the XML (no prolog, no
comments, no whitespace between tags) so that cosmetic reformatting never
changes the hash. ``sign`` embeds the digest in a ``<SIGNATURE>`` block right
before the root closing tag and ``strip_signature`` removes exactly that block
again.
"""

import hashlib
import logging
import re
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime

from customs_edi.clock import utcnow

logger = logging.getLogger("edi.hashing")

HASH_ALGORITHM = "SHA-256"

_PROLOG_RE = re.compile(r"<\?xml[^?]*\?>")
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_INTERTAG_WS_RE = re.compile(r">\s+<")
_SIGNATURE_BLOCK_RE = re.compile(r"<SIGNATURE>.*?</SIGNATURE>\n", re.DOTALL)
_ANY_SIGNATURE_RE = re.compile(r"\s*<SIGNATURE\b[^>]*>.*?</SIGNATURE>\s*", re.DOTALL)
_HASH_VALUE_RE = re.compile(r"<SIGNATURE\b[^>]*>.*?<HASH_VALUE>([^<]*)</HASH_VALUE>.*?</SIGNATURE>", re.DOTALL)
_ROOT_CLOSE_RE = re.compile(r"</([A-Za-z_][\w.-]*)>\s*$")

_BASE36 = string.digits + string.ascii_uppercase


@dataclass(frozen=True)
class HashVerification:
    is_valid: bool
    original_hash: str
    computed_hash: str
    timestamp: datetime


def normalize_xml(xml: str) -> str:
    xml = _PROLOG_RE.sub("", xml)
    xml = _COMMENT_RE.sub("", xml)
    xml = _INTERTAG_WS_RE.sub("><", xml)
    return xml.strip()


def compute_hash(xml: str) -> str:
    return hashlib.sha256(normalize_xml(xml).encode("utf-8")).hexdigest()


def signature_block(xml_hash: str, timestamp: datetime | None = None) -> str:
    ts = (timestamp or utcnow()).isoformat()
    return (
        "<SIGNATURE>\n"
        f"    <HASH_ALGORITHM>{HASH_ALGORITHM}</HASH_ALGORITHM>\n"
        f"    <HASH_VALUE>{xml_hash}</HASH_VALUE>\n"
        f"    <TIMESTAMP>{ts}</TIMESTAMP>\n"
        "  </SIGNATURE>\n"
    )


def sign(xml: str, xml_hash: str, timestamp: datetime | None = None) -> str:
    """Embed a signature block immediately before the root closing tag.

    When no closing tag can be found the block is appended at the end and a
    warning is logged; such output should not be sent to the authority.
    """
    block = signature_block(xml_hash, timestamp)
    match = _ROOT_CLOSE_RE.search(xml)
    if match is None:
        logger.warning("Root closing tag not found, appending signature block (degraded)")
        return xml + block
    return xml[: match.start()] + block + xml[match.start():]


def strip_signature(signed_xml: str) -> str:
    return _SIGNATURE_BLOCK_RE.sub("", signed_xml, count=1)


def extract_digest(signed_xml: str) -> str | None:
    match = _HASH_VALUE_RE.search(signed_xml)
    if match is None:
        return None
    return match.group(1).strip()


def has_signature(xml: str) -> bool:
    return extract_digest(xml) is not None


def content_digest(xml: str) -> str:
    """Digest of a message payload, ignoring any embedded signature block.

    Unlike ``strip_signature`` this accepts the block in any layout; the
    whitespace around it is dropped by normalization.
    """
    return compute_hash(_ANY_SIGNATURE_RE.sub("", xml, count=1))


def verify(xml: str, expected_hash: str) -> HashVerification:
    computed = content_digest(xml)
    return HashVerification(
        is_valid=computed == expected_hash,
        original_hash=expected_hash,
        computed_hash=computed,
        timestamp=utcnow(),
    )


def verify_signed(signed_xml: str) -> HashVerification | None:
    """Verify a signed message against its own embedded digest.

    Returns None when the message carries no signature block.
    """
    digest = extract_digest(signed_xml)
    if digest is None:
        return None
    return verify(signed_xml, digest)


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_message_id() -> str:
    stamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"MSG-{stamp}-{suffix}"
