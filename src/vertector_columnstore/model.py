"""
Model instances: one row of a column family as a Python object.
"""

import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Hashable, Optional, Union

if TYPE_CHECKING:
    from vertector_columnstore.mapper import RowMapper


@dataclass(frozen=True)
class NamedColumn:
    """A column addressed by its name as stored."""
    name: Any


@dataclass(frozen=True)
class LongColumn:
    """A column addressed by a 64-bit integer name."""
    value: int

    @property
    def encoded(self) -> bytes:
        """The store's 8-byte big-endian long encoding of the name."""
        return struct.pack(">q", self.value)


ColumnKey = Union[NamedColumn, LongColumn]


def column_key(key: Any) -> ColumnKey:
    """Classify a raw column name; integers (not bools) become LongColumn."""
    if isinstance(key, (NamedColumn, LongColumn)):
        return key
    if isinstance(key, int) and not isinstance(key, bool):
        return LongColumn(key)
    return NamedColumn(key)


class ColumnModel:
    """
    Base class for row-backed models.

    Subclasses bind a column family once:

        class User(ColumnModel):
            column_family = "users"

    and are read and written through a RowMapper obtained from the store:

        users = store.mapper(User)
        user = users.new("alice", {"name": "Alice"})
        await user.save()
        user = await users.get("alice")

    There is no dirty tracking: ``save`` writes every attribute.
    """

    column_family: ClassVar[str]

    def __init__(self, key: Hashable, attributes: Optional[dict[Any, Any]] = None, mapper: "RowMapper | None" = None):
        self.key = key
        self.attributes = attributes if attributes is not None else {}
        self.mapper = mapper

    def _require_mapper(self) -> "RowMapper":
        if self.mapper is None:
            raise RuntimeError(f"{type(self).__name__} '{self.key}' is not bound to a store")
        return self.mapper

    async def save(self) -> bool:
        await self._require_mapper().insert(self.key, self.attributes)
        return True

    async def reload(self) -> "ColumnModel | None":
        """A freshly fetched copy of this row, or None if it is gone. ``self`` is untouched."""
        return await self._require_mapper().get(self.key)

    async def reload_in_place(self) -> "ColumnModel":
        """Replace ``attributes`` with every column currently stored and return ``self``."""
        self.attributes = dict(await self._require_mapper().all(self.key))
        return self

    async def destroy(self) -> None:
        await self._require_mapper().remove(self.key)

    def __getitem__(self, key: Any) -> Any:
        column = column_key(key)
        if isinstance(column, LongColumn):
            value = self.attributes.get(column.value)
            if value is None:
                value = self.attributes.get(column.encoded)
            return value
        return self.attributes.get(column.name)

    def __setitem__(self, key: Any, value: Any) -> None:
        column = column_key(key)
        self.attributes[column.value if isinstance(column, LongColumn) else column.name] = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ColumnModel):
            return NotImplemented
        return type(self) is type(other) and self.key == other.key and self.attributes == other.attributes

    __hash__ = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(key={self.key!r}, attributes={self.attributes!r})"
