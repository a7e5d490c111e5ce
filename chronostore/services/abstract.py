"""
Storage interface consumed by the versioning services.

`StatementEngine` is the production implementation. Tests substitute an
in-memory store that evaluates the same predicate lists, so the versioning
state machine can be exercised without a database.
"""

from __future__ import annotations

from typing import Any, ContextManager, List, Optional, Protocol, Sequence, runtime_checkable

from chronostore.persistence.predicates import Predicate


@runtime_checkable
class StateStore(Protocol):
    """
    Row-level operations the temporal service needs from storage.

    Every method returns its empty value (-1, False, [], None) for a failure it
    recovered from; inside `transaction()` failures raise `StatementError`
    instead so the scope rolls back.
    """

    def insert(self, model: type, state: Any) -> int:
        """
        Insert `state` as a new row.

        Returns
        -------
        int
            The storage-assigned rid, or -1 on failure.
        """
        ...

    def update(self, model: type, state: Any) -> bool:
        """Overwrite the row with `state.rid`."""
        ...

    def select(
        self,
        model: type,
        columns: Optional[Sequence[str]] = None,
        where: Optional[Sequence[Predicate]] = None,
    ) -> List[Any]:
        """Rows matching `where`, materialized as `model` instances."""
        ...

    def max_entity_id(self, model: type) -> Optional[int]:
        """Largest entity id stored, 0 when empty, None on failure."""
        ...

    def lock_entity(self, model: type, key: Any) -> None:
        """Serialize writers of one entity until the open transaction ends."""
        ...

    def transaction(self) -> ContextManager[Any]:
        """Scope in which every statement commits or rolls back together."""
        ...


__all__ = ["StateStore"]
