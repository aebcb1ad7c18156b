"""Evidence hash chain.

Every captured photo is bound to its capture metadata by a single SHA-256
digest (the content hash). An audit pack combines the content hashes of all
evidence under a job, plus the job identity and the generation timestamp,
into one pack hash. Sorting before combining makes the pack hash a function
of the evidence set rather than of the order the record store returns it in.
"""

from __future__ import annotations

from collections.abc import Iterable
from hashlib import sha256

PACK_HASH_SEPARATOR = "|"
DISPLAY_EDGE_CHARS = 16


def item_hash(photo_bytes: bytes, captured_at: str, worker_id: str) -> str:
    """Hash photo bytes, capture timestamp and worker id, in that fixed order."""
    digest = sha256()
    digest.update(photo_bytes)
    digest.update(captured_at.encode("utf-8"))
    digest.update(worker_id.encode("utf-8"))
    return digest.hexdigest()


def pack_hash(
    item_hashes: Iterable[str],
    job_id: str,
    job_title: str,
    generated_at: str,
) -> str:
    """Combine item hashes with job identity and generation time.

    Duplicate item hashes are kept: two identical captures are still two
    pieces of evidence.
    """
    components = [*sorted(item_hashes), job_id, job_title, generated_at]
    return sha256(PACK_HASH_SEPARATOR.join(components).encode("utf-8")).hexdigest()


def verify_item_hash(
    photo_bytes: bytes,
    captured_at: str,
    worker_id: str,
    expected: str,
) -> bool:
    """Recompute the content hash and compare it with the stored value.

    Plain comparison is fine here: the hash is not a secret.
    """
    return item_hash(photo_bytes, captured_at, worker_id) == expected.strip().lower()


def truncate_hash(value: str | None) -> str | None:
    """Shorten a digest for display, keeping both ends for manual cross-checks."""
    if not value:
        return None
    if len(value) <= DISPLAY_EDGE_CHARS * 2:
        return value
    return f"{value[:DISPLAY_EDGE_CHARS]}...{value[-DISPLAY_EDGE_CHARS:]}"
