from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from crmpro.core.database import Base
from crmpro.resources.models import Candidate, Deal, PayrollRecord, UserProfile
from crmpro.resources.schemas import CandidateRead, DealRead, PayrollRecordRead, RecordRead
from crmpro.security.permissions import Module
from crmpro.store.base import Ordering
from crmpro.store.errors import UnknownResourceError


@dataclass(frozen=True, slots=True)
class JoinSpec:
    """A denormalized sub-structure filled from a foreign key at select time."""

    name: str
    foreign_key: str
    target: type[Base]
    columns: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ResourceDefinition:
    name: str
    model: type[Base]
    schema: type[RecordRead]
    module: str
    joins: tuple[JoinSpec, ...] = ()
    default_ordering: tuple[Ordering, ...] = ()


class ResourceRegistry:
    def __init__(self, definitions: Iterable[ResourceDefinition] = ()) -> None:
        self._definitions: dict[str, ResourceDefinition] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: ResourceDefinition) -> None:
        self._definitions[definition.name] = definition

    def get(self, resource_type: str) -> ResourceDefinition:
        definition = self._definitions.get(resource_type)
        if definition is None:
            raise UnknownResourceError(resource_type)
        return definition


_NEWEST_FIRST = (Ordering("created_at", descending=True),)

DEFAULT_RESOURCES = ResourceRegistry(
    [
        ResourceDefinition(
            name="candidates",
            model=Candidate,
            schema=CandidateRead,
            module=Module.CANDIDATES,
            joins=(JoinSpec("recruiter", "recruiter_id", UserProfile, ("full_name", "email")),),
            default_ordering=_NEWEST_FIRST,
        ),
        ResourceDefinition(
            name="deals",
            model=Deal,
            schema=DealRead,
            module=Module.PIPELINE,
            joins=(JoinSpec("owner", "owner_id", UserProfile, ("full_name", "email")),),
            default_ordering=_NEWEST_FIRST,
        ),
        ResourceDefinition(
            name="payroll_records",
            model=PayrollRecord,
            schema=PayrollRecordRead,
            module=Module.PAYROLL,
            joins=(JoinSpec("employee", "employee_id", UserProfile, ("full_name", "email")),),
            default_ordering=_NEWEST_FIRST,
        ),
    ]
)
