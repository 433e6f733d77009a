from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any, TypeVar

from pydantic import BaseModel

from crmpro.metrics import observe_masked_fields
from crmpro.security.permissions import Module, Role


EMAIL_MASK = "***@***.***"
PHONE_MASK = "***-***-****"
GOVERNMENT_ID_MASK = "***-**-****"
ADDRESS_MASK = "*** Hidden ***"

_PII_MASKS: Mapping[str, str] = MappingProxyType(
    {
        "email": EMAIL_MASK,
        "phone": PHONE_MASK,
        "ssn": GOVERNMENT_ID_MASK,
        "address": ADDRESS_MASK,
    }
)

# (role, module) -> field -> placeholder
MASKING_RULES: Mapping[tuple[str, str], Mapping[str, str]] = MappingProxyType(
    {
        (Role.FINANCE, Module.CANDIDATES): _PII_MASKS,
    }
)

RecordT = TypeVar("RecordT", bound=Mapping[str, Any] | BaseModel)


def masked_fields_for(role: str | None, module: str | None) -> Mapping[str, str]:
    if not role or not module:
        return MappingProxyType({})
    return MASKING_RULES.get((role, module), MappingProxyType({}))


def sensitive_fields_for(module: str | None) -> frozenset[str]:
    """Fields of ``module`` that some role sees masked."""
    return frozenset(name for (_, rule_module), fields in MASKING_RULES.items() if rule_module == module for name in fields)


def mask_sensitive_fields(record: RecordT, role: str | None, module: str | None) -> RecordT:
    """Redact personally identifying fields for the (role, module) pairs in ``MASKING_RULES``.

    Present values are replaced by a fixed placeholder and empty ones become
    ``None``, so masking an already-masked record is a no-op. Records of
    any other pair are returned unchanged. Accepts plain mappings and
    pydantic records; the input is never mutated.
    """

    rules = masked_fields_for(role, module)
    if not rules or record is None:
        return record

    source = record.model_dump() if isinstance(record, BaseModel) else record
    updates: dict[str, Any] = {}
    for field_name, placeholder in rules.items():
        if field_name not in source:
            continue
        updates[field_name] = placeholder if source[field_name] else None

    observe_masked_fields(str(role), str(module), sum(1 for value in updates.values() if value is not None))

    if isinstance(record, BaseModel):
        return record.model_copy(update=updates)
    return {**record, **updates}  # type: ignore[return-value]


def mask_many(records: Iterable[RecordT], role: str | None, module: str | None) -> list[RecordT]:
    return [mask_sensitive_fields(record, role, module) for record in records]
