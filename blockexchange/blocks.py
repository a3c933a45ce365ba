"""Content-addressed blocks."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

# Multihash header for a sha2-256 digest: function code 0x12, length 0x20.
_SHA256_MULTIHASH_PREFIX = "1220"


def make_cid(data: bytes) -> str:
    """Return the content identifier of ``data``: a hex sha2-256 multihash."""
    return _SHA256_MULTIHASH_PREFIX + hashlib.sha256(data).hexdigest()


@dataclass(frozen=True)
class Block:
    """An immutable piece of data together with its content identifier."""

    data: bytes
    cid: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "cid", make_cid(self.data))