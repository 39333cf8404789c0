"""Address: the location of a rendered object in the score hierarchy."""

from __future__ import annotations

import itertools
from enum import Enum

from scoreflow.errors import AddressError

_ids = itertools.count(1)


class AddressType(str, Enum):
    """Address ranks, outermost first."""

    SYSTEM = "system"
    PART = "part"
    MEASURE = "measure"
    MEASURE_FRAGMENT = "measurefragment"
    STAVE = "stave"
    CHORUS = "chorus"
    VOICE = "voice"


class Address:
    """
    An immutable node in the containment tree.

    Only :meth:`system` creates a root; every other node is created by
    descending from a parent of the next outer rank. Two addresses belong to
    the same group of a given rank when their lineages share that ancestor.
    """

    __slots__ = ("_type", "_id", "_parent")

    def __init__(self, address_type: AddressType, parent: Address | None) -> None:
        self._type = address_type
        self._id = next(_ids)
        self._parent = parent

    @classmethod
    def system(cls) -> Address:
        """Creates an address for a system."""
        return cls(AddressType.SYSTEM, None)

    @property
    def type(self) -> AddressType:
        return self._type

    @property
    def parent(self) -> Address | None:
        return self._parent

    def part(self) -> Address:
        return self._descend(AddressType.SYSTEM, AddressType.PART)

    def measure(self) -> Address:
        return self._descend(AddressType.PART, AddressType.MEASURE)

    def measure_fragment(self) -> Address:
        return self._descend(AddressType.MEASURE, AddressType.MEASURE_FRAGMENT)

    def stave(self) -> Address:
        return self._descend(AddressType.MEASURE_FRAGMENT, AddressType.STAVE)

    def chorus(self) -> Address:
        return self._descend(AddressType.STAVE, AddressType.CHORUS)

    def voice(self) -> Address:
        return self._descend(AddressType.CHORUS, AddressType.VOICE)

    def get(self, address_type: AddressType) -> Address | None:
        """Return the nearest node of ``address_type`` in the lineage, self included."""
        node: Address | None = self
        while node is not None:
            if node._type is address_type:
                return node
            node = node._parent
        return None

    def is_member_of(self, address_type: AddressType, other: Address) -> bool:
        """
        Whether both addresses share the same ancestor of ``address_type``.

        Raises:
            AddressError: When the type is missing from either lineage.
        """
        mine = self.get(address_type)
        if mine is None:
            raise AddressError(f"self address must have type '{address_type.value}' in its lineage, got None")
        theirs = other.get(address_type)
        if theirs is None:
            raise AddressError(f"other address must have type '{address_type.value}' in its lineage, got None")
        return mine._id == theirs._id

    def _descend(self, expected: AddressType, child_type: AddressType) -> Address:
        if self._type is not expected:
            raise AddressError(f"must be of type '{expected.value}', got: '{self._type.value}'")
        return Address(child_type, self)

    def __repr__(self) -> str:
        return f"Address({self._type.value}#{self._id})"
