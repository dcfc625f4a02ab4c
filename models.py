from __future__ import annotations

from sqlalchemy import Boolean, Column, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from db import Base
from utils import iso_utc_now


class CorporateUser(Base):
    __tablename__ = "corporate_users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False, default="")
    email = Column(String, nullable=False, default="", index=True)
    username = Column(String, nullable=False, default="")
    enabled = Column(Boolean, nullable=False, default=True)
    dateAdded = Column(Text, nullable=False, default=iso_utc_now)
    dateLastModified = Column(Text, nullable=False, default=iso_utc_now, index=True)


class ClientCorporation(Base):
    __tablename__ = "client_corporations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="Active")
    dateLastModified = Column(Text, nullable=False, default=iso_utc_now, index=True)


class ClientContact(Base):
    __tablename__ = "client_contacts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False, default="")
    email = Column(String, nullable=False, default="")
    phone = Column(String, nullable=False, default="")
    clientCorporationId = Column(Integer, ForeignKey("client_corporations.id"), nullable=True, index=True)
    dateLastModified = Column(Text, nullable=False, default=iso_utc_now, index=True)

    clientCorporation = relationship("ClientCorporation")


class Candidate(Base):
    __tablename__ = "candidates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False, default="")
    email = Column(String, nullable=False, default="", index=True)
    phone = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default="New Lead", index=True)
    source = Column(Text, nullable=False, default="")
    ownerId = Column(Integer, ForeignKey("corporate_users.id"), nullable=True, index=True)
    # Derived from the latest education record by the event workflow.
    educationDegree = Column(Text, nullable=False, default="")
    dateAdded = Column(Text, nullable=False, default=iso_utc_now)
    dateLastModified = Column(Text, nullable=False, default=iso_utc_now, index=True)

    owner = relationship("CorporateUser")
    educations = relationship("CandidateEducation", back_populates="candidate", order_by="CandidateEducation.id")


class CandidateEducation(Base):
    __tablename__ = "candidate_educations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    candidateId = Column(Integer, ForeignKey("candidates.id"), nullable=False, index=True)
    school = Column(Text, nullable=False, default="")
    degree = Column(Text, nullable=False, default="")
    major = Column(Text, nullable=False, default="")
    graduationDate = Column(Text, nullable=False, default="")
    isDeleted = Column(Boolean, nullable=False, default=False)
    dateLastModified = Column(Text, nullable=False, default=iso_utc_now, index=True)

    candidate = relationship("Candidate", back_populates="educations")


class JobOrder(Base):
    __tablename__ = "job_orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="Open", index=True)
    employmentType = Column(String, nullable=False, default="")
    clientContactId = Column(Integer, ForeignKey("client_contacts.id"), nullable=True)
    clientCorporationId = Column(Integer, ForeignKey("client_corporations.id"), nullable=True, index=True)
    ownerId = Column(Integer, ForeignKey("corporate_users.id"), nullable=True)
    dateAdded = Column(Text, nullable=False, default=iso_utc_now)
    dateLastModified = Column(Text, nullable=False, default=iso_utc_now, index=True)

    clientContact = relationship("ClientContact")
    clientCorporation = relationship("ClientCorporation")
    owner = relationship("CorporateUser")


class JobSubmission(Base):
    __tablename__ = "job_submissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    status = Column(String, nullable=False, default="Submitted")
    candidateId = Column(Integer, ForeignKey("candidates.id"), nullable=True, index=True)
    jobOrderId = Column(Integer, ForeignKey("job_orders.id"), nullable=True, index=True)
    sendingUserId = Column(Integer, ForeignKey("corporate_users.id"), nullable=True)
    dateLastModified = Column(Text, nullable=False, default=iso_utc_now, index=True)

    candidate = relationship("Candidate")
    jobOrder = relationship("JobOrder")
    sendingUser = relationship("CorporateUser")


class Placement(Base):
    __tablename__ = "placements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    status = Column(String, nullable=False, default="Submitted", index=True)
    dateBegin = Column(Text, nullable=False, default="")
    dateEnd = Column(Text, nullable=False, default="")
    payRate = Column(Float, nullable=False, default=0.0)
    clientBillRate = Column(Float, nullable=False, default=0.0)
    employmentType = Column(String, nullable=False, default="")
    candidateId = Column(Integer, ForeignKey("candidates.id"), nullable=True, index=True)
    jobOrderId = Column(Integer, ForeignKey("job_orders.id"), nullable=True, index=True)
    jobSubmissionId = Column(Integer, ForeignKey("job_submissions.id"), nullable=True)
    # Derived fields maintained by event tasks.
    totalCommissionPercentage = Column(Float, nullable=False, default=0.0)
    credentialingStatus = Column(String, nullable=False, default="NONE")
    dateAdded = Column(Text, nullable=False, default=iso_utc_now)
    dateLastModified = Column(Text, nullable=False, default=iso_utc_now, index=True)

    candidate = relationship("Candidate")
    jobOrder = relationship("JobOrder")
    jobSubmission = relationship("JobSubmission")
    commissions = relationship("PlacementCommission", back_populates="placement", order_by="PlacementCommission.id")
    certifications = relationship(
        "PlacementCertification", back_populates="placement", order_by="PlacementCertification.id"
    )


class PlacementCommission(Base):
    __tablename__ = "placement_commissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    placementId = Column(Integer, ForeignKey("placements.id"), nullable=False, index=True)
    userId = Column(Integer, ForeignKey("corporate_users.id"), nullable=True)
    role = Column(String, nullable=False, default="")
    commissionPercentage = Column(Float, nullable=False, default=0.0)
    status = Column(String, nullable=False, default="Active")
    isDeleted = Column(Boolean, nullable=False, default=False)
    dateLastModified = Column(Text, nullable=False, default=iso_utc_now, index=True)

    placement = relationship("Placement", back_populates="commissions")
    user = relationship("CorporateUser")


class Certification(Base):
    __tablename__ = "certifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False, default="")
    dateLastModified = Column(Text, nullable=False, default=iso_utc_now)


class PlacementCertification(Base):
    __tablename__ = "placement_certifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    placementId = Column(Integer, ForeignKey("placements.id"), nullable=False, index=True)
    certificationId = Column(Integer, ForeignKey("certifications.id"), nullable=True)
    status = Column(String, nullable=False, default="Pending")  # Pending|Approved|Rejected
    dateExpiration = Column(Text, nullable=False, default="")
    isDeleted = Column(Boolean, nullable=False, default=False)
    dateLastModified = Column(Text, nullable=False, default=iso_utc_now, index=True)

    placement = relationship("Placement", back_populates="certifications")
    certification = relationship("Certification")


class BillMaster(Base):
    __tablename__ = "bill_masters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    placementId = Column(Integer, ForeignKey("placements.id"), nullable=True, index=True)
    transactionStatus = Column(String, nullable=False, default="Unbilled")
    billableHours = Column(Float, nullable=False, default=0.0)
    billRate = Column(Float, nullable=False, default=0.0)
    amount = Column(Float, nullable=False, default=0.0)
    dateLastModified = Column(Text, nullable=False, default=iso_utc_now, index=True)

    placement = relationship("Placement")


class EventTaskRun(Base):
    """
    Audit trail of event pipeline executions: one row per task per event.

    outcome: OK|FAILED|SKIPPED|NOT_RUN
    """
    __tablename__ = "event_task_runs"
    __table_args__ = (Index("ix_event_task_runs_entity", "entityType", "entityId"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    eventId = Column(String, nullable=False, default="", index=True)
    entityType = Column(String, nullable=False, default="")
    entityId = Column(Integer, nullable=False, default=0)
    eventType = Column(String, nullable=False, default="")
    taskName = Column(String, nullable=False, default="")
    taskOrder = Column(Integer, nullable=False, default=0)
    outcome = Column(String, nullable=False, default="", index=True)
    error = Column(Text, nullable=False, default="")
    durationMs = Column(Integer, nullable=False, default=0)
    at = Column(Text, nullable=False, default="")


class DlmCheckpoint(Base):
    __tablename__ = "dlm_checkpoints"

    entityType = Column(String, primary_key=True)
    lastModifiedSeen = Column(Text, nullable=False, default="")
    # Tie-break for rows sharing lastModifiedSeen.
    lastIdSeen = Column(Integer, nullable=False, default=0)
    lastRunAt = Column(Text, nullable=False, default="")
    processedCount = Column(Integer, nullable=False, default=0)


ENTITY_MODELS: dict[str, type] = {
    "BillMaster": BillMaster,
    "Candidate": Candidate,
    "CandidateEducation": CandidateEducation,
    "ClientContact": ClientContact,
    "ClientCorporation": ClientCorporation,
    "CorporateUser": CorporateUser,
    "JobOrder": JobOrder,
    "JobSubmission": JobSubmission,
    "Placement": Placement,
    "PlacementCertification": PlacementCertification,
    "PlacementCommission": PlacementCommission,
}
