"""
Internal clinical records exposed through the FHIR layer.

Each table carries the same bookkeeping columns:
- string UUID primary key (doubles as the FHIR resource id)
- ``version`` counter that backs ``meta.versionId``
- ``deleted_at`` soft-delete marker; rows are never removed
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from clinic_fhir.models.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the storage convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class VersionedMixin:
    id = Column(String(36), primary_key=True, default=new_id)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)


# ---------------------------------------------------------------------------
# Clinic – maps to FHIR Organization
# ---------------------------------------------------------------------------
class Clinic(VersionedMixin, Base):
    __tablename__ = "clinics"

    name = Column(String(255), nullable=False)
    cnpj = Column(String(14), nullable=True, comment="Digits only")
    email = Column(String(255))
    phone = Column(String(32))
    address = Column(Text)
    city = Column(String(128))
    state = Column(String(2))
    zip_code = Column(String(8))
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (Index("ix_clinics_cnpj", "cnpj"),)


# ---------------------------------------------------------------------------
# Patient – maps to FHIR Patient
# ---------------------------------------------------------------------------
class Patient(VersionedMixin, Base):
    __tablename__ = "patients"

    name = Column(String(255), nullable=False, comment="Free-text full name")
    email = Column(String(255))
    phone = Column(String(32))
    cpf = Column(String(11), nullable=True, comment="Digits only")
    cns = Column(String(15), nullable=True, comment="Digits only")
    birth_date = Column(Date)
    gender = Column(String(16), default="NOT_SPECIFIED", nullable=False)
    address = Column(Text)
    city = Column(String(128))
    state = Column(String(2))
    zip_code = Column(String(8))
    is_active = Column(Boolean, default=True, nullable=False)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=True)

    clinic = relationship("Clinic")

    __table_args__ = (
        Index("ix_patients_cpf", "cpf"),
        Index("ix_patients_cns", "cns"),
    )


# ---------------------------------------------------------------------------
# Doctor – maps to FHIR Practitioner
# ---------------------------------------------------------------------------
class Doctor(VersionedMixin, Base):
    __tablename__ = "doctors"

    name = Column(String(255), nullable=False)
    email = Column(String(255))
    phone = Column(String(32))
    crm = Column(String(16), nullable=True, comment="Digits only")
    crm_state = Column(String(2), default="SP")
    specialty = Column(String(128))
    is_active = Column(Boolean, default=True, nullable=False)


# ---------------------------------------------------------------------------
# Appointment – maps to FHIR Appointment
# ---------------------------------------------------------------------------
class Appointment(VersionedMixin, Base):
    __tablename__ = "appointments"

    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False)
    doctor_id = Column(String(36), ForeignKey("doctors.id"), nullable=False)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=True)
    scheduled_at = Column(DateTime, nullable=False)
    end_time = Column(DateTime)
    duration = Column(Integer, comment="Minutes")
    status = Column(String(16), default="PENDING", nullable=False)
    type = Column(String(64), default="CONSULTATION", nullable=False)
    notes = Column(Text)

    patient = relationship("Patient")
    doctor = relationship("Doctor")
    clinic = relationship("Clinic")

    __table_args__ = (
        Index("ix_appointments_patient", "patient_id"),
        Index("ix_appointments_scheduled", "scheduled_at"),
    )


# ---------------------------------------------------------------------------
# Lab Result – maps to FHIR Observation
# ---------------------------------------------------------------------------
class LabResult(VersionedMixin, Base):
    __tablename__ = "lab_results"

    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False)
    test_code = Column(String(32))
    test_name = Column(String(255))
    value = Column(String(255), comment="Numeric or free text result")
    unit = Column(String(32))
    reference_range = Column(String(64), comment="'low - high'")
    status = Column(String(16), default="PENDING", nullable=False)
    is_critical = Column(Boolean, default=False, nullable=False)
    notes = Column(Text)
    performed_at = Column(DateTime)

    __table_args__ = (Index("ix_lab_results_patient", "patient_id"),)


# ---------------------------------------------------------------------------
# Diagnosis – maps to FHIR Condition
# ---------------------------------------------------------------------------
class Diagnosis(VersionedMixin, Base):
    __tablename__ = "diagnoses"

    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False)
    consultation_id = Column(String(36), nullable=True)
    icd_code = Column(String(16))
    description = Column(Text)
    notes = Column(Text)

    __table_args__ = (Index("ix_diagnoses_patient", "patient_id"),)


# ---------------------------------------------------------------------------
# Prescription – maps to FHIR MedicationRequest (first item only)
# ---------------------------------------------------------------------------
class Prescription(VersionedMixin, Base):
    __tablename__ = "prescriptions"

    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False)
    doctor_id = Column(String(36), ForeignKey("doctors.id"), nullable=True)
    status = Column(String(16), default="ACTIVE", nullable=False)
    notes = Column(Text)

    patient = relationship("Patient")
    doctor = relationship("Doctor")
    items = relationship(
        "PrescriptionItem",
        back_populates="prescription",
        order_by="PrescriptionItem.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("ix_prescriptions_patient", "patient_id"),)


class PrescriptionItem(Base):
    __tablename__ = "prescription_items"

    id = Column(String(36), primary_key=True, default=new_id)
    prescription_id = Column(String(36), ForeignKey("prescriptions.id"), nullable=False)
    position = Column(Integer, default=0, nullable=False)
    medication_code = Column(String(64))
    medication_name = Column(String(255))
    dosage = Column(String(32))
    unit = Column(String(32))
    frequency = Column(String(128))
    quantity = Column(Integer)
    duration = Column(String(16), comment="Days")
    instructions = Column(Text)

    prescription = relationship("Prescription", back_populates="items")


# ---------------------------------------------------------------------------
# Audit Log – immutable compliance trail
# ---------------------------------------------------------------------------
class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(String(36), primary_key=True, default=new_id)
    actor = Column(String(128), nullable=False, comment="User or service identity")
    action = Column(String(64), nullable=False, comment="create | update | delete")
    resource_type = Column(String(64), nullable=False)
    resource_id = Column(String(36), nullable=False)
    detail = Column(JSON, comment="Old and new values for the action")
    timestamp = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("ix_audit_timestamp", "timestamp"),)
