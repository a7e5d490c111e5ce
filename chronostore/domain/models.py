"""
Domain models for chronostore.

`CommonState` carries the temporal and attribution columns every record type
shares; application record types subclass it and add plain attributes. An
`Entity` groups the states of one logical record into its current value and
its history.
"""
from __future__ import annotations

from datetime import datetime
from typing import ClassVar, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field


class CommonState(BaseModel):
    """
    One versioned snapshot of an entity. Column names follow the attribute names.
    """

    # Set to False on a subclass to keep it out of the schema entirely.
    persisted: ClassVar[bool] = True

    rid: int = Field(-1, description="Version id (BIGSERIAL), assigned by storage on insert.")
    id: int = Field(-1, description="Entity id shared by every state of one entity.")
    arsd: Optional[datetime] = Field(None, description="Active range start date.")
    ared: Optional[datetime] = Field(None, description="Active range end date; None while open.")
    cf: bool = Field(False, description="Current flag.")
    df: bool = Field(False, description="Delete flag.")
    euid: int = Field(-1, description="Id of the user that saved the state.")
    esid: int = Field(-1, description="Id of the system that saved the state.")
    tid: int = Field(1, description="Tenant id.")

    model_config = ConfigDict(arbitrary_types_allowed=True)


S = TypeVar("S", bound=CommonState)


class Entity(BaseModel, Generic[S]):
    """
    Logical record: at most one current state plus superseded history.
    """

    entity_id: int = -1
    current: Optional[S] = None
    history: List[S] = Field(default_factory=list)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def states(self) -> List[S]:
        """Current state (if any) followed by history."""
        return ([self.current] if self.current is not None else []) + list(self.history)


class System(CommonState):
    """A system that edits states; referenced by `esid`."""

    name: str = ""
    description: str = ""
    sha256_encoded_password: str = ""


class Tenant(CommonState):
    """An isolation boundary; referenced by `tid`."""

    name: str = ""
    description: str = ""
    is_primary: bool = False
    web_url: str = ""


__all__ = ["CommonState", "Entity", "S", "System", "Tenant"]
