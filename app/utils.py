"""
Utility functions for the backend provider layer.

Provides common functionality for:
- Document id generation
- Key case conversion (camelCase <-> snake_case)
- Data URL decoding
- Service account credential decoding
"""
from __future__ import annotations

import base64
import binascii
import json
import re
import secrets
import string
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote_to_bytes

from app.config import get_logger

logger = get_logger("utils")


# =============================================================================
# Document IDs
# =============================================================================

_ID_ALPHABET = string.ascii_letters + string.digits
DOCUMENT_ID_LENGTH = 20


def generate_document_id(length: int = DOCUMENT_ID_LENGTH) -> str:
    """
    Generate a collision-resistant document id.

    Same shape as Firestore auto-ids: 20 characters drawn from
    ``[A-Za-z0-9]`` with a CSPRNG (~119 bits of entropy).
    """
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


# =============================================================================
# Key Case Conversion
# =============================================================================

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def to_snake_case(name: str) -> str:
    """
    Convert a camelCase key to snake_case.

    >>> to_snake_case("photoURL")
    'photo_url'
    >>> to_snake_case("wearPercentage")
    'wear_percentage'
    """
    if "_" in name or name.islower():
        return name
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def to_camel_case(name: str) -> str:
    """
    Convert a snake_case column to camelCase.

    >>> to_camel_case("last_service_date")
    'lastServiceDate'
    """
    if name.startswith("_"):
        return name
    head, *rest = name.split("_")
    if not rest:
        return name
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


# =============================================================================
# Data URLs
# =============================================================================

_DATA_URL = re.compile(r"^data:(?P<mime>[^;,]*)(?P<params>(?:;[^;,]*)*),(?P<payload>.*)$", re.S)


@dataclass(frozen=True)
class DecodedDataURL:
    """Binary payload and media type extracted from a ``data:`` URL."""
    content: bytes
    content_type: str


def parse_data_url(data_url: str) -> DecodedDataURL:
    """
    Decode a RFC 2397 data URL.

    Supports both base64 (``;base64``) and percent-encoded payloads.
    An empty media type defaults to ``text/plain`` as per the RFC.

    Raises:
        ValueError: If the string is not a well-formed data URL
    """
    match = _DATA_URL.match(data_url or "")
    if not match:
        raise ValueError("Not a data URL")

    content_type = match.group("mime") or "text/plain"
    params = [p for p in match.group("params").split(";") if p]
    payload = match.group("payload")

    if "base64" in params:
        try:
            content = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 payload in data URL: {e}") from e
    else:
        content = unquote_to_bytes(payload)

    return DecodedDataURL(content=content, content_type=content_type)


# =============================================================================
# Credentials
# =============================================================================

def decode_service_account(encoded: str) -> dict[str, Any]:
    """
    Decode a base64-encoded service account JSON document.

    Missing base64 padding is tolerated (env vars frequently lose it).
    """
    padded = encoded + "=" * ((4 - len(encoded) % 4) % 4)
    cred_json = base64.b64decode(padded).decode("utf-8")
    return json.loads(cred_json)
