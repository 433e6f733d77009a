from __future__ import annotations

from crmpro.resources.schemas import CandidateRead
from crmpro.security.masking import (
    ADDRESS_MASK,
    EMAIL_MASK,
    GOVERNMENT_ID_MASK,
    PHONE_MASK,
    mask_many,
    mask_sensitive_fields,
    masked_fields_for,
)


def _candidate() -> dict[str, object]:
    return {
        "id": "c1",
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",
        "phone": "555-010-0199",
        "ssn": "123-45-6789",
        "address": "12 Analytical Way",
        "stage": "applied",
    }


def test_finance_sees_candidate_pii_masked() -> None:
    masked = mask_sensitive_fields(_candidate(), "finance", "candidates")

    assert masked["email"] == EMAIL_MASK
    assert masked["phone"] == PHONE_MASK
    assert masked["ssn"] == GOVERNMENT_ID_MASK
    assert masked["address"] == ADDRESS_MASK
    assert masked["first_name"] == "Ada"
    assert masked["stage"] == "applied"


def test_masking_never_mutates_the_input() -> None:
    record = _candidate()

    mask_sensitive_fields(record, "finance", "candidates")

    assert record["email"] == "ada@example.com"


def test_masking_is_idempotent() -> None:
    once = mask_sensitive_fields(_candidate(), "finance", "candidates")
    twice = mask_sensitive_fields(once, "finance", "candidates")

    assert once == twice


def test_empty_values_become_none() -> None:
    record = {**_candidate(), "phone": "", "ssn": None}

    masked = mask_sensitive_fields(record, "finance", "candidates")

    assert masked["phone"] is None
    assert masked["ssn"] is None
    assert masked["email"] == EMAIL_MASK


def test_other_roles_and_modules_are_untouched() -> None:
    record = _candidate()

    assert mask_sensitive_fields(record, "recruiter", "candidates") is record
    assert mask_sensitive_fields(record, "finance", "payroll") is record
    assert mask_sensitive_fields(record, None, "candidates") is record
    assert dict(masked_fields_for("admin", "candidates")) == {}


def test_pydantic_records_are_masked_by_copy() -> None:
    record = CandidateRead.model_validate(_candidate())

    masked = mask_sensitive_fields(record, "finance", "candidates")

    assert isinstance(masked, CandidateRead)
    assert masked.email == EMAIL_MASK
    assert masked.ssn == GOVERNMENT_ID_MASK
    assert record.email == "ada@example.com"


def test_mask_many() -> None:
    records = [_candidate(), {**_candidate(), "id": "c2", "email": None}]

    masked = mask_many(records, "finance", "candidates")

    assert [item["email"] for item in masked] == [EMAIL_MASK, None]
