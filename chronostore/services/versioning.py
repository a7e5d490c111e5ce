"""
Temporal versioning service.

Every logical record (entity) is stored as a series of states. Exactly one
non-deleted state per entity carries the current flag and an open active
range; the others are history with a closed range. `save` supersedes the
current state, `set_delete_flag_single_state` soft-deletes a state and promotes
the most recently closed history entry when the current one goes away, and
`remove_delete_flag_single_state` restores a state, superseding the present
current one when the restored state started later.

Reads select rows with a base filter (not deleted, optionally one tenant) plus
a variant-specific predicate, then regroup the flat row list into `Entity`
objects. The current/history split reflects each row's flag today, also for
point-in-time queries; `Entity.states` gives the flat list.

Multi-statement writes run in one transaction scope with an advisory lock on
the entity when `Settings.atomic_writes` is on. With it off, each statement
commits on its own and concurrent writers of one entity can race.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional, Sequence, Type

import psycopg

from chronostore.config import Settings, get_settings
from chronostore.domain.models import Entity, S
from chronostore.persistence.errors import CodecError, StatementError
from chronostore.persistence.predicates import (
    NULL,
    Conjunction,
    Grouping,
    Operator,
    Predicate,
    ValueType,
)
from chronostore.persistence.type_mapper import table_name
from chronostore.services.abstract import StateStore
from chronostore.utils.logging import get_logger

log = get_logger(__name__)

# Failures from storage are reported at the service boundary, not raised.
STORAGE_ERRORS = (StatementError, CodecError, psycopg.Error)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the TIMESTAMP column type."""
    return datetime.now(UTC).replace(tzinfo=None)


# --- predicate helpers -------------------------------------------------------


def not_deleted() -> Predicate:
    return Predicate("df", True, Operator.NOT_EQUAL, ValueType.BOOLEAN)


def tenant_is(tenant_id: int) -> Predicate:
    return Predicate("tid", tenant_id, value_type=ValueType.LONG)


def current_is(flag: bool) -> Predicate:
    return Predicate("cf", flag, value_type=ValueType.BOOLEAN)


def entity_id_is(entity_id: int) -> Predicate:
    return Predicate("id", entity_id, value_type=ValueType.LONG)


def rid_is(rid: int) -> Predicate:
    return Predicate("rid", rid, value_type=ValueType.LONG)


def _open_at_or_after(moment: datetime) -> List[Predicate]:
    """`(ared >= moment OR ared IS NULL)`"""
    return [
        Predicate(
            "ared",
            moment,
            Operator.GREATER_THAN_OR_EQUAL,
            ValueType.DATE,
            groupings=[Grouping.OPEN_PARENTHESIS],
        ),
        Predicate(
            "ared",
            NULL,
            Operator.IS,
            conjunction=Conjunction.OR,
            groupings=[Grouping.CLOSE_PARENTHESIS],
        ),
    ]


def started_by(moment: datetime) -> Predicate:
    return Predicate("arsd", moment, Operator.LESS_THAN_OR_EQUAL, ValueType.DATE)


def at_date(moment: datetime) -> List[Predicate]:
    """States effective at `moment`."""
    return [started_by(moment), *_open_at_or_after(moment)]


def from_date(moment: datetime) -> List[Predicate]:
    """States still effective at or after `moment`."""
    return _open_at_or_after(moment)


def before_date(moment: datetime) -> List[Predicate]:
    """States that became effective at or before `moment`."""
    return [started_by(moment)]


def between_dates(start: datetime, end: datetime) -> List[Predicate]:
    """States effective at some point within `[start, end]`."""
    return [started_by(end), *_open_at_or_after(start)]


def grouped(predicates: Sequence[Predicate]) -> List[Predicate]:
    """Copy `predicates` wrapped in one pair of parentheses."""
    copies = [replace(p, groupings=list(p.groupings)) for p in predicates]
    if copies:
        copies[0].groupings.insert(0, Grouping.OPEN_PARENTHESIS)
        copies[-1].groupings.append(Grouping.CLOSE_PARENTHESIS)
    return copies


class TemporalService:
    """
    Save, soft-delete, restore, and query versioned entities.

    Parameters
    ----------
    store : StateStore
        Row-level storage, normally a `StatementEngine`.
    settings : Settings, optional
        Supplies the default tenant and the `atomic_writes` switch.
    clock : callable, optional
        Returns the naive UTC "now" stamped on writes; injectable for tests.
    """

    def __init__(
        self,
        store: StateStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock

    # -- plumbing --------------------------------------------------------------

    def _tenant(self, tenant_id: Optional[int]) -> int:
        return self.settings.default_tenant_id if tenant_id is None else tenant_id

    def _report(self, action: str, model: type, exc: Exception) -> None:
        log.warning(
            "%s failed for %s: %s",
            action,
            table_name(model),
            exc,
            extra={"sqlstate": getattr(exc, "sqlstate", None), "table": table_name(model)},
        )

    @contextmanager
    def _write_scope(self, model: type, key: Any) -> Generator[None, None, None]:
        if not self.settings.atomic_writes:
            yield
            return
        with self.store.transaction():
            self.store.lock_entity(model, key)
            yield

    def _select(self, model: Type[S], predicates: Sequence[Predicate], action: str) -> List[S]:
        try:
            return self.store.select(model, where=predicates)
        except STORAGE_ERRORS as exc:
            self._report(action, model, exc)
            return []

    def _load_entity(self, model: Type[S], entity_id: int) -> Optional[Entity[S]]:
        states = self.store.select(model, where=[not_deleted(), entity_id_is(entity_id)])
        return self.manage_returned_entity(states)

    def _allocate_entity_id(self, model: type) -> int:
        max_id = self.store.max_entity_id(model)
        if max_id is None:
            raise StatementError(f"Could not read the largest id of '{table_name(model)}'")
        return max_id + 1

    # -- writes ----------------------------------------------------------------

    def save(
        self,
        model: Type[S],
        state: S,
        user_id: int = -1,
        system_id: int = -1,
        tenant_id: Optional[int] = None,
    ) -> Optional[Entity[S]]:
        """
        Save `state` as the new current state of its entity.

        A state without an entity id starts a new entity. Otherwise the present
        current state is closed at the same instant the new one opens.

        Parameters
        ----------
        model : type
            Record type of `state`.
        state : CommonState
            New value. Its temporal, flag, and attribution fields are overwritten.
        user_id, system_id : int
            Attribution of the edit.
        tenant_id : int, optional
            Tenant of the state; defaults to `Settings.default_tenant_id`.

        Returns
        -------
        Entity or None
            The entity reloaded after the write, None if it failed.
        """
        now = self.clock()
        state.arsd = now
        state.ared = None
        state.cf = True
        state.df = False
        state.euid = user_id
        state.esid = system_id
        state.tid = self._tenant(tenant_id)

        try:
            with self._write_scope(model, state.id if state.id > 0 else "new"):
                if state.id <= 0:
                    state.id = self._allocate_entity_id(model)

                existing = self._load_entity(model, state.id)
                if existing is not None and existing.current is not None:
                    previous = existing.current
                    previous.ared = now
                    previous.cf = False
                    self.store.update(model, previous)

                rid = self.store.insert(model, state)
        except STORAGE_ERRORS as exc:
            self._report("save", model, exc)
            return None

        if rid < 0:
            log.warning("save of %s entity %s returned no rid", table_name(model), state.id)
            return None
        return self.get_entity_by_rid(model, rid)

    def set_delete_flag_single_state(self, model: Type[S], state: S) -> bool:
        """
        Soft-delete one state. Deleting the current state closes it and promotes
        the history entry with the latest end date, if any.
        """
        if model is None or state is None:
            return False
        try:
            with self._write_scope(model, state.id):
                state.df = True
                entity = self._load_entity(model, state.id)
                if entity is not None and entity.current is not None and entity.current.rid == state.rid:
                    state.ared = self.clock()
                    state.cf = False
                    if entity.history:
                        latest = max(entity.history, key=lambda s: s.ared or datetime.min)
                        latest.cf = True
                        latest.ared = None
                        self.store.update(model, latest)
                self.store.update(model, state)
        except STORAGE_ERRORS as exc:
            self._report("set delete flag", model, exc)
            return False
        return True

    def remove_delete_flag_single_state(self, model: Type[S], state: S) -> bool:
        """
        Restore a soft-deleted state. It becomes current when the entity has no
        current state, or when it started later than the present current one.
        """
        if model is None or state is None:
            return False
        try:
            with self._write_scope(model, state.id):
                entity = self._load_entity(model, state.id)
                current = entity.current if entity is not None else None
                state.df = False

                if current is None:
                    state.cf = True
                    state.ared = None
                elif (
                    current.arsd is not None
                    and state.arsd is not None
                    and current.arsd < state.arsd
                ):
                    state.cf = True
                    state.ared = None
                    current.cf = False
                    current.ared = state.arsd
                    self.store.update(model, current)

                self.store.update(model, state)
        except STORAGE_ERRORS as exc:
            self._report("remove delete flag", model, exc)
            return False
        return True

    def get_new_entity_id(self, model: type) -> int:
        """Next free entity id (1 for an empty table), -1 on failure."""
        try:
            return self._allocate_entity_id(model)
        except STORAGE_ERRORS as exc:
            self._report("new entity id", model, exc)
            return -1

    # -- collection reads ------------------------------------------------------

    def _get_all(
        self,
        model: Type[S],
        extra: Iterable[Predicate],
        tenant_id: Optional[int],
        action: str,
    ) -> List[Entity[S]]:
        predicates = [not_deleted(), tenant_is(self._tenant(tenant_id)), *extra]
        return self.manage_returned_entities(self._select(model, predicates, action))

    def get_all(self, model: Type[S], tenant_id: Optional[int] = None) -> List[Entity[S]]:
        """Every entity with current and history."""
        return self._get_all(model, [], tenant_id, "get all")

    def get_all_current(self, model: Type[S], tenant_id: Optional[int] = None) -> List[Entity[S]]:
        """Every entity with its current state only."""
        return self._get_all(model, [current_is(True)], tenant_id, "get all current")

    def get_all_history(self, model: Type[S], tenant_id: Optional[int] = None) -> List[Entity[S]]:
        """Every entity with its history only."""
        return self._get_all(model, [current_is(False)], tenant_id, "get all history")

    def get_all_at_date(
        self, model: Type[S], moment: datetime, tenant_id: Optional[int] = None
    ) -> List[Entity[S]]:
        return self._get_all(model, at_date(moment), tenant_id, "get all at date")

    def get_all_from_date(
        self, model: Type[S], moment: datetime, tenant_id: Optional[int] = None
    ) -> List[Entity[S]]:
        return self._get_all(model, from_date(moment), tenant_id, "get all from date")

    def get_all_before_date(
        self, model: Type[S], moment: datetime, tenant_id: Optional[int] = None
    ) -> List[Entity[S]]:
        return self._get_all(model, before_date(moment), tenant_id, "get all before date")

    def get_all_between_dates(
        self,
        model: Type[S],
        start: datetime,
        end: datetime,
        tenant_id: Optional[int] = None,
    ) -> List[Entity[S]]:
        return self._get_all(model, between_dates(start, end), tenant_id, "get all between dates")

    def get_all_where(
        self,
        model: Type[S],
        predicates: Sequence[Predicate],
        tenant_id: Optional[int] = None,
    ) -> List[Entity[S]]:
        """
        Entities whose states match caller predicates on top of the base filter.
        The caller's predicates are parenthesized, so an OR among them cannot
        widen the base filter.
        """
        return self._get_all(model, grouped(predicates), tenant_id, "get all where")

    # -- single-entity reads ---------------------------------------------------

    def _get_entity(
        self, model: Type[S], entity_id: int, extra: Iterable[Predicate], action: str
    ) -> Optional[Entity[S]]:
        predicates = [not_deleted(), entity_id_is(entity_id), *extra]
        return self.manage_returned_entity(self._select(model, predicates, action))

    def get_entity_by_id(self, model: Type[S], entity_id: int) -> Optional[Entity[S]]:
        """Current and history of one entity. Not filtered by tenant."""
        return self._get_entity(model, entity_id, [], "get entity by id")

    def get_entity_by_rid(self, model: Type[S], rid: int) -> Optional[Entity[S]]:
        """The whole entity that owns the state with version id `rid`."""
        states = self._select(model, [not_deleted(), rid_is(rid)], "get entity by rid")
        if not states:
            return None
        return self.get_entity_by_id(model, states[0].id)

    def get_entity_current_by_id(self, model: Type[S], entity_id: int) -> Optional[Entity[S]]:
        return self._get_entity(model, entity_id, [current_is(True)], "get entity current")

    def get_entity_history_by_id(self, model: Type[S], entity_id: int) -> Optional[Entity[S]]:
        return self._get_entity(model, entity_id, [current_is(False)], "get entity history")

    def get_entity_at_date_by_id(
        self, model: Type[S], entity_id: int, moment: datetime
    ) -> Optional[Entity[S]]:
        return self._get_entity(model, entity_id, at_date(moment), "get entity at date")

    def get_entity_from_date_by_id(
        self, model: Type[S], entity_id: int, moment: datetime
    ) -> Optional[Entity[S]]:
        return self._get_entity(model, entity_id, from_date(moment), "get entity from date")

    def get_entity_before_date_by_id(
        self, model: Type[S], entity_id: int, moment: datetime
    ) -> Optional[Entity[S]]:
        return self._get_entity(model, entity_id, before_date(moment), "get entity before date")

    def get_entity_between_dates_by_id(
        self, model: Type[S], entity_id: int, start: datetime, end: datetime
    ) -> Optional[Entity[S]]:
        return self._get_entity(
            model, entity_id, between_dates(start, end), "get entity between dates"
        )

    # -- reconstruction --------------------------------------------------------

    def manage_returned_entities(self, states: Iterable[S]) -> List[Entity[S]]:
        """Group a flat row list into entities, in order of first appearance."""
        entities: Dict[int, Entity[S]] = {}
        for state in states:
            entity = entities.get(state.id)
            if entity is None:
                entity = entities[state.id] = Entity()
            self.add_state_to_entity(state, entity)
        return list(entities.values())

    def manage_returned_entity(self, states: Iterable[S]) -> Optional[Entity[S]]:
        """
        Fold rows of one entity into a single `Entity`; None when there are none.
        Rows of any other entity id are ignored.
        """
        entity: Entity[S] = Entity()
        for state in states:
            self.add_state_to_entity(state, entity)
        return entity if entity.entity_id != -1 else None

    @staticmethod
    def add_state_to_entity(state: S, entity: Entity[S]) -> None:
        if entity.entity_id == -1:
            entity.entity_id = state.id
        if entity.entity_id != state.id:
            log.debug("State rid=%s belongs to entity %s, not %s", state.rid, state.id, entity.entity_id)
            return
        if state.cf:
            entity.current = state
        elif all(existing.rid != state.rid for existing in entity.history):
            entity.history.append(state)


__all__ = [
    "TemporalService",
    "at_date",
    "before_date",
    "between_dates",
    "from_date",
    "grouped",
    "utcnow",
]
