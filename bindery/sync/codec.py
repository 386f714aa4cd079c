"""Snapshot codec: versioned JSON payloads, NIP-44 encrypted.

Readers accept the current payload version and the one before it, so a
device running the previous release can still restore snapshots while a
rollout is in progress.
"""

import json
import logging
from typing import Any

from jsonschema import Draft7Validator

from ..errors import (
    DecryptFailed,
    EncryptFailed,
    MalformedPayload,
    PayloadTooLarge,
    UnsupportedVersion,
)
from ..models import SnapshotPayload
from ..nostr import nip44
from .keys import DerivedKey, conversation_key

logger = logging.getLogger(__name__)

PAYLOAD_VERSION = 2
SUPPORTED_VERSIONS = (PAYLOAD_VERSION - 1, PAYLOAD_VERSION)

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

BOOK_SCHEMA = {
    "type": "object",
    "required": ["id", "d", "title", "createdAt", "updatedAt"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "d": {"type": "string"},
        "title": {"type": "string"},
        "summary": {"type": "string"},
        "cover": {"type": "string"},
        "tags": _STRING_LIST,
        "topics": _STRING_LIST,
        "coAuthors": _STRING_LIST,
        "chapterOrder": _STRING_LIST,
        "createdAt": {"type": "integer"},
        "updatedAt": {"type": "integer"},
        "publishedHash": {"type": "string"},
    },
}

CHAPTER_SCHEMA = {
    "type": "object",
    "required": ["id", "d", "bookId", "title", "contentMd", "status", "createdAt", "updatedAt"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "d": {"type": "string"},
        "bookId": {"type": "string"},
        "title": {"type": "string"},
        "contentMd": {"type": "string"},
        "status": {"enum": ["draft", "ready"]},
        "createdAt": {"type": "integer"},
        "updatedAt": {"type": "integer"},
        "pubkey": {"type": "string"},
        "publishedHash": {"type": "string"},
    },
}

HISTORY_SCHEMA = {
    "type": "object",
    "required": ["id", "chapterId", "contentMd", "createdAt"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "chapterId": {"type": "string"},
        "contentMd": {"type": "string"},
        "reason": {"type": "string"},
        "createdAt": {"type": "integer"},
    },
}

PAYLOAD_SCHEMA = {
    "type": "object",
    "required": ["version", "timestamp", "action"],
    "properties": {
        "version": {"type": "integer"},
        "timestamp": {"type": "integer"},
        "action": {"enum": ["snapshot", "delete"]},
        "book": BOOK_SCHEMA,
        "chapters": {"type": "array", "items": CHAPTER_SCHEMA},
        "chapterId": {"type": "string"},
        "history": {"type": "array", "items": HISTORY_SCHEMA},
    },
}

_validator = Draft7Validator(PAYLOAD_SCHEMA)


def _conversation_key(key: DerivedKey | bytes) -> bytes:
    return conversation_key(key) if isinstance(key, DerivedKey) else key


def canonical_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def encode(payload: SnapshotPayload, key: DerivedKey | bytes) -> str:
    """Serialize and encrypt a payload.

    Raises:
        PayloadTooLarge: The serialized payload exceeds what NIP-44 can carry.
        EncryptFailed: Any other encryption failure.
    """
    plaintext = canonical_json(payload.to_dict())
    try:
        return nip44.encrypt(plaintext, _conversation_key(key))
    except nip44.Nip44Error as e:
        if nip44.INVALID_PLAINTEXT_SIZE in str(e):
            logger.error(
                f"Draft snapshot too large: {len(plaintext.encode('utf-8'))} bytes"
            )
            raise PayloadTooLarge(cause=e) from e
        logger.error(f"Draft sync encryption failed: {e}")
        raise EncryptFailed("Failed to encrypt draft snapshot", e) from e


def decode(cipher: str, key: DerivedKey | bytes) -> SnapshotPayload:
    """Decrypt, parse and validate a payload.

    Raises:
        DecryptFailed: Authentication failed or the ciphertext is malformed.
        UnsupportedVersion: The payload version is not one we can apply.
        MalformedPayload: The plaintext is not a valid payload.
    """
    try:
        plaintext = nip44.decrypt(cipher, _conversation_key(key))
    except nip44.Nip44Error as e:
        raise DecryptFailed(f"Failed to decrypt draft snapshot: {e}", e) from e

    try:
        data = json.loads(plaintext)
    except ValueError as e:
        raise MalformedPayload("Draft snapshot is not valid JSON", e) from e

    if isinstance(data, dict) and isinstance(data.get("version"), int):
        if data["version"] not in SUPPORTED_VERSIONS:
            raise UnsupportedVersion(
                f"Snapshot version {data['version']} not supported "
                f"(accepts {SUPPORTED_VERSIONS})"
            )

    errors = list(_validator.iter_errors(data))
    if errors:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.path) or 'root'}: {err.message}"
            for err in errors[:5]
        )
        raise MalformedPayload(f"Invalid draft snapshot: {details}")

    return SnapshotPayload.from_dict(data)
