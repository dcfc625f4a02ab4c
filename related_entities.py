"""
Default related-entity field sets per business entity type.

Static configuration data: for every root entity type, the related entities an
event task may need and the fields fetched for each. `path` is the dotted
relationship path from the root entity ("" is the root itself).
"""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping

from utils import NotFoundError


@dataclass(frozen=True)
class RelatedEntity:
    path: str
    fields: frozenset[str]


def _rel(path: str, *fields: str) -> RelatedEntity:
    return RelatedEntity(path=path, fields=frozenset(fields))


_CANDIDATE_OWNER = ("id", "name", "email")

_CATALOG: dict[str, dict[str, RelatedEntity]] = {
    "PlacementCommission": {
        "PLACEMENT_COMMISSION": _rel(
            "", "id", "role", "commissionPercentage", "status", "isDeleted", "placement(id)", "user(id,name)"
        ),
        "USER": _rel("user", "id", "name", "email"),
        "PLACEMENT": _rel(
            "placement",
            "id",
            "status",
            "dateBegin",
            "dateEnd",
            "payRate",
            "clientBillRate",
            "employmentType",
            "jobSubmission(id,status)",
            "jobOrder(id,title)",
            "candidate(id,name)",
        ),
        "JOB_SUBMISSION": _rel("placement.jobSubmission", "id", "status", "sendingUser(id,name)"),
        "JOB_SUBMISSION_SENDING_USER": _rel("placement.jobSubmission.sendingUser", "id", "name", "email"),
        "JOB_ORDER": _rel(
            "placement.jobOrder",
            "id",
            "title",
            "employmentType",
            "clientContact(id,name)",
            "clientCorporation(id,name)",
            "owner(id,name)",
        ),
        "CLIENT_CONTACT": _rel(
            "placement.jobOrder.clientContact", "id", "name", "email", "phone", "clientCorporation(id,name)"
        ),
        "CLIENT_CORPORATION": _rel("placement.jobOrder.clientCorporation", "id", "name"),
        "JOB_OWNER": _rel("placement.jobOrder.owner", "id", "name", "email"),
        "CANDIDATE": _rel("placement.candidate", "id", "name", "email", "phone", "owner(id,name)"),
        "CANDIDATE_OWNER": _rel("placement.candidate.owner", *_CANDIDATE_OWNER),
    },
    "Placement": {
        "PLACEMENT": _rel(
            "",
            "id",
            "status",
            "dateBegin",
            "dateEnd",
            "payRate",
            "clientBillRate",
            "totalCommissionPercentage",
            "credentialingStatus",
            "candidate(id,name)",
            "jobOrder(id,title)",
        ),
        "CANDIDATE": _rel("candidate", "id", "name", "email", "owner(id,name)"),
        "JOB_ORDER": _rel("jobOrder", "id", "title", "status", "clientCorporation(id,name)"),
        "COMMISSIONS": _rel("commissions", "id", "commissionPercentage", "isDeleted"),
        "CERTIFICATIONS": _rel("certifications", "id", "status", "dateExpiration", "isDeleted"),
    },
    "PlacementCertification": {
        "PLACEMENT_CERTIFICATION": _rel(
            "", "id", "status", "dateExpiration", "isDeleted", "placement(id)", "certification(id,name)"
        ),
        "PLACEMENT": _rel("placement", "id", "status", "credentialingStatus", "candidate(id,name)"),
        "CERTIFICATION": _rel("certification", "id", "name"),
        "CANDIDATE": _rel("placement.candidate", "id", "name", "email"),
    },
    "Candidate": {
        "CANDIDATE": _rel("", "id", "name", "email", "phone", "status", "educationDegree", "owner(id,name)"),
        "CANDIDATE_OWNER": _rel("owner", *_CANDIDATE_OWNER),
        "EDUCATIONS": _rel("educations", "id", "degree", "school", "graduationDate", "isDeleted"),
    },
    "CandidateEducation": {
        "CANDIDATE_EDUCATION": _rel(
            "", "id", "school", "degree", "major", "graduationDate", "isDeleted", "candidate(id)"
        ),
        "CANDIDATE": _rel("candidate", "id", "name", "educationDegree", "owner(id,name)"),
        "CANDIDATE_OWNER": _rel("candidate.owner", *_CANDIDATE_OWNER),
    },
    "CorporateUser": {
        "CORPORATE_USER": _rel("", "id", "name", "email", "username", "enabled"),
    },
    "JobOrder": {
        "JOB_ORDER": _rel("", "id", "title", "status", "employmentType", "owner(id,name)"),
        "CLIENT_CORPORATION": _rel("clientCorporation", "id", "name"),
        "CLIENT_CONTACT": _rel("clientContact", "id", "name", "email", "phone"),
    },
    "BillMaster": {
        "BILL_MASTER": _rel("", "id", "transactionStatus", "billableHours", "billRate", "amount", "placement(id)"),
        "PLACEMENT": _rel("placement", "id", "status", "clientBillRate"),
    },
}


RELATED_ENTITY_FIELDS: Mapping[str, Mapping[str, RelatedEntity]] = MappingProxyType(
    {entity: MappingProxyType(dict(rels)) for entity, rels in _CATALOG.items()}
)


def entity_types() -> list[str]:
    return sorted(RELATED_ENTITY_FIELDS)


def related_entities(entity_type: str) -> Mapping[str, RelatedEntity]:
    rels = RELATED_ENTITY_FIELDS.get(str(entity_type or ""))
    if rels is None:
        raise NotFoundError(f"No field catalog for entity type: {entity_type}")
    return rels


def root_key(entity_type: str) -> str:
    for key, rel in related_entities(entity_type).items():
        if not rel.path:
            return key
    raise NotFoundError(f"No root field set for entity type: {entity_type}")


def default_fields(entity_type: str) -> frozenset[str]:
    return related_entities(entity_type)[root_key(entity_type)].fields


def merge_related_fields(
    base: Mapping[str, RelatedEntity], extras: Iterable[Mapping[str, Iterable[str]]]
) -> Mapping[str, RelatedEntity]:
    """
    Union extra field names into `base` per related key. A key missing from
    `base` raises ValueError: a task cannot invent a relationship path.
    """
    merged = {key: set(rel.fields) for key, rel in base.items()}
    for extra in extras:
        for key, fields in (extra or {}).items():
            if key not in merged:
                raise ValueError(f"Unknown related entity key: {key}")
            merged[key].update(str(f) for f in fields)
    return MappingProxyType(
        {key: RelatedEntity(path=base[key].path, fields=frozenset(fields)) for key, fields in merged.items()}
    )
