import hashlib
import re

HASH_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def file_hash(data: bytes) -> str:
    """SHA-256 hex digest of a whole file."""
    return hashlib.sha256(data).hexdigest()


def normalize_hash(value: str) -> str:
    """Lower-case and trim a client-supplied hash."""
    return value.strip().lower()


def is_valid_hash(value: str) -> bool:
    return bool(HASH_PATTERN.match(value))
