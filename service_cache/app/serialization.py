"""
Versioned envelope codec for cached values.

Every value written to the cache is wrapped in a small JSON envelope so the
accessor and any other reader of the cache agree on format::

    {"v": 1, "kind": "value", "fresh_until": 1718000000.0, "data": {...}}

``kind`` is ``"missing"`` for negative-cache markers, in which case ``data``
is null.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel

from shared.logging import get_logger

ENVELOPE_VERSION = 1


class EntryKind(str, Enum):
    """Kinds of cached entries."""
    VALUE = "value"
    MISSING = "missing"


@dataclass(frozen=True)
class CachedItem:
    """Decoded cache envelope."""
    kind: EntryKind
    value: Any
    fresh_until: float

    @property
    def is_missing(self) -> bool:
        return self.kind is EntryKind.MISSING

    def is_fresh(self, now: float) -> bool:
        return now < self.fresh_until


class CacheCodec:
    """Encode and decode cache envelopes."""

    def __init__(self, version: int = ENVELOPE_VERSION):
        self.version = version
        self.logger = get_logger("cache.codec")

    def encode_value(self, value: Any, fresh_until: float) -> bytes:
        if isinstance(value, BaseModel):
            value = value.model_dump(mode="json")
        return self._dump(EntryKind.VALUE, value, fresh_until)

    def encode_missing(self, fresh_until: float) -> bytes:
        return self._dump(EntryKind.MISSING, None, fresh_until)

    def decode(self, raw: Optional[bytes]) -> Optional[CachedItem]:
        """Decode raw cache bytes; unreadable payloads decode as a miss."""
        if raw is None:
            return None

        try:
            envelope = json.loads(raw)
            if envelope.get("v") != self.version:
                self.logger.warning(
                    "Ignoring cache entry with unknown envelope version",
                    version=envelope.get("v"),
                    expected=self.version
                )
                return None
            return CachedItem(
                kind=EntryKind(envelope["kind"]),
                value=envelope.get("data"),
                fresh_until=float(envelope["fresh_until"])
            )
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            self.logger.warning("Failed to decode cached payload", error=str(e))
            return None

    def _dump(self, kind: EntryKind, data: Any, fresh_until: float) -> bytes:
        envelope = {
            "v": self.version,
            "kind": kind.value,
            "fresh_until": fresh_until,
            "data": data,
        }
        return json.dumps(envelope, separators=(",", ":"), sort_keys=True).encode("utf-8")
