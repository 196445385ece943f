# continuity/chain/linker.py
import hashlib

from continuity.core.canon import chain_preimage
from continuity.core.types import ActionRecord, GENESIS


def link(content: dict, previous: str = GENESIS) -> str:
    """
    hash = sha256(JCS(content) || previous), hex encoded.
    `content` is the record envelope without `_integrity`.
    """
    return hashlib.sha256(chain_preimage(content, previous)).hexdigest()


def record_hash(record: ActionRecord) -> str:
    """Recompute the digest of an already linked record."""
    if record.integrity is None:
        raise ValueError("Cannot hash an unlinked record")
    return link(record.content_envelope(), record.integrity.previous)
