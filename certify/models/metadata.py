"""Category-specific metadata shapes.

Metadata is an open bag that is hashed as-is.  Where a category is known we
check the types of the keys issuers commonly fill in; unknown keys pass
through untouched (extra="allow") so new form fields never need a release.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from certify.core.errors import ValidationError
from certify.models.certificate import CredentialCategory


class _Metadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    # Fields every issuance form can carry
    course: str | None = None
    organization: str | None = None
    grade: str | None = None
    achievements: list[str] | None = None
    eventName: str | None = None
    eventDate: str | None = None
    eventLocation: str | None = None
    eventDescription: str | None = None
    rollNo: str | None = None


class GenericMetadata(_Metadata):
    pass


class AcademicMetadata(_Metadata):
    degree: str | None = None
    institution: str | None = None
    graduationDate: str | None = None
    gpa: float | None = None
    honors: list[str] | None = None
    fieldOfStudy: str | None = None


class SkillMetadata(_Metadata):
    skillName: str | None = None
    skillLevel: str | None = None
    certifyingOrganization: str | None = None
    completionDate: str | None = None
    assessmentScore: float | None = None
    prerequisites: list[str] | None = None


class EmploymentMetadata(_Metadata):
    jobTitle: str | None = None
    employer: str | None = None
    startDate: str | None = None
    endDate: str | None = None
    responsibilities: list[str] | None = None
    supervisor: str | None = None


class ProfessionalMetadata(_Metadata):
    licenseNumber: str | None = None
    profession: str | None = None
    issuingAuthority: str | None = None
    expirationDate: str | None = None
    specializations: list[str] | None = None


class GovernmentMetadata(_Metadata):
    licenseType: str | None = None
    authority: str | None = None
    jurisdiction: str | None = None


class GigMetadata(_Metadata):
    platform: str | None = None
    role: str | None = None
    serviceType: str | None = None
    rating: float | None = None
    projectDescription: str | None = None


def metadata_model(category: CredentialCategory | None) -> type[_Metadata]:
    match category:
        case None:
            return GenericMetadata
        case CredentialCategory.ACADEMIC:
            return AcademicMetadata
        case CredentialCategory.SKILL:
            return SkillMetadata
        case CredentialCategory.EMPLOYMENT:
            return EmploymentMetadata
        case CredentialCategory.PROFESSIONAL:
            return ProfessionalMetadata
        case CredentialCategory.GOVERNMENT:
            return GovernmentMetadata
        case CredentialCategory.GIG:
            return GigMetadata


def validate_metadata(
    category: CredentialCategory | None, raw: dict[str, Any] | None
) -> dict[str, Any]:
    """Type-check known keys and return the plain dict that gets hashed.

    Keys whose value is None are dropped, so "absent" and "null" hash the
    same way.
    """
    model = metadata_model(category)
    try:
        parsed = model.model_validate(raw or {})
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ValidationError(f"invalid metadata for {model.__name__}: {fields}") from e
    return parsed.model_dump(exclude_none=True)
