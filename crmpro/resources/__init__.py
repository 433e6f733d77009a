from crmpro.resources.registry import DEFAULT_RESOURCES, JoinSpec, ResourceDefinition, ResourceRegistry
from crmpro.resources.schemas import CandidateRead, DealRead, PayrollRecordRead, RecordRead, UserRef

__all__ = [
    "DEFAULT_RESOURCES",
    "JoinSpec",
    "ResourceDefinition",
    "ResourceRegistry",
    "RecordRead",
    "CandidateRead",
    "DealRead",
    "PayrollRecordRead",
    "UserRef",
]
