"""
Soft references: id columns that point at another table without a foreign key.

They exist where the referencing row must outlive or precede the target (a
rider's current order is set and cleared by the order lifecycle and may
dangle after data repair). Declaring them here makes the gap explicit:
resolution goes through an injected ``ReferenceLookup`` and callers must
handle ``ResolvedReference.dangling``.
"""
from dataclasses import dataclass
from typing import Any, Generic, Optional, Protocol, TypeVar

from orderflow.db.models.order import Order
from orderflow.db.models.rider import Rider

T = TypeVar("T")


class ReferenceLookup(Protocol):
    async def lookup(self, model: type, key: Any) -> Optional[Any]:
        ...


@dataclass(frozen=True)
class SoftReference(Generic[T]):
    name: str
    source: type
    attribute: str
    target: type[T]

    def key_of(self, instance: Any) -> Optional[Any]:
        if not isinstance(instance, self.source):
            raise TypeError(f"{self.name} is declared on {self.source.__name__}")
        return getattr(instance, self.attribute)

    def assign(self, instance: Any, target: Optional[T]) -> None:
        setattr(instance, self.attribute, getattr(target, "id") if target is not None else None)

    async def resolve(self, instance: Any, lookup: ReferenceLookup) -> "ResolvedReference[T]":
        key = self.key_of(instance)
        target = await lookup.lookup(self.target, key) if key is not None else None
        return ResolvedReference(reference=self, key=key, target=target)


@dataclass(frozen=True)
class ResolvedReference(Generic[T]):
    reference: SoftReference[T]
    key: Optional[Any]
    target: Optional[T]

    @property
    def is_set(self) -> bool:
        return self.key is not None

    @property
    def dangling(self) -> bool:
        """Key present but no visible target row"""
        return self.key is not None and self.target is None


RIDER_CURRENT_ORDER: SoftReference[Order] = SoftReference(
    name="rider.current_order",
    source=Rider,
    attribute="current_order_id",
    target=Order,
)
