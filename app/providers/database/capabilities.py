"""
Capability negotiation for database adapters.

Each adapter declares up front which query operators, field-value
kinds and higher-level features it supports. Adapters check requests
against this declaration before touching the network, so an unsupported
feature fails with UnsupportedFeatureError instead of silently
degrading.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Iterable

from app.exceptions import UnsupportedFeatureError

if TYPE_CHECKING:
    from .interface import FieldValueKind, QueryConstraint, WhereOp


class SubCollectionStrategy(str, Enum):
    NATIVE = "native"
    FOREIGN_KEY = "foreign_key"


class Feature(str, Enum):
    CURSORS = "cursors"
    TRANSACTIONS = "transactions"
    ATOMIC_BATCH = "atomic_batch"
    REALTIME = "realtime"
    VECTOR_SEARCH = "vector_search"


@dataclass(frozen=True)
class DatabaseCapabilities:
    """Static feature declaration of one database adapter."""
    provider: str
    where_ops: frozenset["WhereOp"]
    field_values: frozenset["FieldValueKind"]
    features: frozenset[Feature]
    sub_collections: SubCollectionStrategy = SubCollectionStrategy.NATIVE

    def supports(self, feature: Feature) -> bool:
        return feature in self.features

    def require(self, feature: Feature, details: str | None = None) -> None:
        if feature not in self.features:
            raise UnsupportedFeatureError(feature.value, self.provider, details)

    def check_query(self, constraints: Iterable["QueryConstraint"]) -> None:
        """Reject constraints this backend cannot evaluate faithfully."""
        from .interface import ConstraintType

        for constraint in constraints:
            if constraint.type is ConstraintType.WHERE and constraint.op not in self.where_ops:
                raise UnsupportedFeatureError(
                    f"where operator {constraint.op.value!r}",
                    self.provider,
                )
            if constraint.type in (ConstraintType.START_AFTER, ConstraintType.START_AT):
                self.require(Feature.CURSORS)

    def check_field_value(self, kind: "FieldValueKind", details: str | None = None) -> None:
        if kind not in self.field_values:
            raise UnsupportedFeatureError(f"FieldValue.{kind.value}", self.provider, details)
