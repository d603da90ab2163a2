"""Record-kind registry: routes each record kind to its storage adapter.

The cache store never inspects record classes directly.  It asks the
registry for the adapter of a kind and uses the adapter's table name and
encode/decode functions.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from pydantic import TypeAdapter

from src.metrics.base import CacheableRecord
from src.metrics.errors import UnsupportedRecordType

_TABLE_NAME_RE = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")


def table_name_for(kind: str) -> str:
    """Derive a SQL-safe table name from a kind tag ('anki:daily_stats' → 'cache_anki_daily_stats')."""
    return "cache_" + re.sub(r"[^a-z0-9]+", "_", kind.lower()).strip("_")


@dataclass
class RecordAdapter:
    """Storage adapter for one record kind.

    Attributes:
        record_cls: The CacheableRecord subclass.
        table:      Backend table / collection name.
    """

    record_cls: type[CacheableRecord]
    table: str
    _type_adapter: TypeAdapter = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not _TABLE_NAME_RE.match(self.table):
            raise ValueError(f"Invalid table name for {self.kind}: {self.table!r}")
        self._type_adapter = TypeAdapter(self.record_cls)

    @property
    def kind(self) -> str:
        return self.record_cls.kind()

    def encode(self, record: CacheableRecord) -> dict[str, Any]:
        """Record → JSON-compatible payload dict."""
        return self._type_adapter.dump_python(record, mode="json")

    def decode(self, payload: dict[str, Any]) -> CacheableRecord:
        """Payload dict → record.  Raises pydantic.ValidationError on schema drift."""
        return self._type_adapter.validate_python(payload)


class RecordRegistry:
    """Mapping of kind tag → RecordAdapter."""

    def __init__(self) -> None:
        self._adapters: dict[str, RecordAdapter] = {}

    def register(
        self, record_cls: type[CacheableRecord], table: str | None = None
    ) -> RecordAdapter:
        kind = record_cls.kind()
        if kind in self._adapters:
            raise ValueError(f"Record kind '{kind}' is already registered")
        adapter = RecordAdapter(record_cls, table or table_name_for(kind))
        self._adapters[kind] = adapter
        return adapter

    def adapter_for(self, record_type: type[CacheableRecord] | str) -> RecordAdapter:
        """Look up an adapter by record class or kind tag.

        Raises:
            UnsupportedRecordType: If the kind is not registered.
        """
        kind = record_type if isinstance(record_type, str) else record_type.kind()
        adapter = self._adapters.get(kind)
        if adapter is None:
            raise UnsupportedRecordType(
                f"No storage adapter registered for record kind '{kind}'. "
                f"Available: {sorted(self._adapters)}"
            )
        return adapter

    def kinds(self) -> list[str]:
        return sorted(self._adapters)

    def __contains__(self, kind: object) -> bool:
        return kind in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)


def default_registry() -> RecordRegistry:
    """Registry with every built-in record kind."""
    from src.metrics.records import ALL_RECORD_TYPES

    registry = RecordRegistry()
    for record_cls in ALL_RECORD_TYPES:
        registry.register(record_cls)
    return registry
