"""
Bidirectional mapping between internal clinical records and FHIR R4 resources.

One converter per resource kind. ``to_internal`` turns an inbound resource into
a typed ``*Fields`` dataclass (every field Optional, nothing persisted yet);
``to_fhir`` renders an ORM row. Neither side touches the database.

Round-trip guarantee: internal -> FHIR -> internal -> FHIR yields the same
FHIR document for every mapped element. Names are the one lossy mapping
(free text is split on whitespace) and carry ``text`` so they stay stable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from clinic_fhir.fhir import datatypes as dt
from clinic_fhir.fhir.identity import meta

LOINC_SYSTEM = "http://loinc.org"
ICD10_SYSTEM = "http://hl7.org/fhir/sid/icd-10"
ANVISA_SYSTEM = "http://www.anvisa.gov.br/medicamentos"
UCUM_SYSTEM = "http://unitsofmeasure.org"
SERVICE_TYPE_SYSTEM = "http://terminology.hl7.org/CodeSystem/service-type"
INTERPRETATION_SYSTEM = "http://terminology.hl7.org/CodeSystem/v3-ObservationInterpretation"
QUALIFICATION_SYSTEM = "http://terminology.hl7.org/CodeSystem/v2-0360"

ABNORMAL_INTERPRETATIONS = {"H", "HH", "L", "LL", "A"}

# ---------------------------------------------------------------------------
# Status tables
# ---------------------------------------------------------------------------

APPOINTMENT_STATUS_TO_INTERNAL = {
    "proposed": "PENDING",
    "pending": "PENDING",
    "booked": "SCHEDULED",
    "arrived": "CONFIRMED",
    "checked-in": "CONFIRMED",
    "fulfilled": "COMPLETED",
    "cancelled": "CANCELLED",
    "noshow": "NO_SHOW",
}
APPOINTMENT_STATUS_TO_FHIR = {
    "PENDING": "pending",
    "SCHEDULED": "booked",
    "CONFIRMED": "booked",
    "IN_PROGRESS": "arrived",
    "COMPLETED": "fulfilled",
    "CANCELLED": "cancelled",
    "NO_SHOW": "noshow",
}

OBSERVATION_STATUS_TO_INTERNAL = {
    "registered": "PENDING",
    "preliminary": "IN_PROGRESS",
    "final": "COMPLETED",
    "amended": "COMPLETED",
    "corrected": "COMPLETED",
    "cancelled": "CANCELLED",
}
OBSERVATION_STATUS_TO_FHIR = {
    "PENDING": "registered",
    "IN_PROGRESS": "preliminary",
    "COMPLETED": "final",
    "CANCELLED": "cancelled",
}

MEDICATION_STATUS_TO_INTERNAL = {
    "active": "ACTIVE",
    "completed": "COMPLETED",
    "cancelled": "CANCELLED",
    "stopped": "CANCELLED",
}
MEDICATION_STATUS_TO_FHIR = {
    "ACTIVE": "active",
    "COMPLETED": "completed",
    "CANCELLED": "cancelled",
}


def appointment_status_to_internal(status: str | None) -> str:
    return APPOINTMENT_STATUS_TO_INTERNAL.get(status or "", "PENDING")


def appointment_status_to_fhir(status: str | None) -> str:
    return APPOINTMENT_STATUS_TO_FHIR.get(status or "", "pending")


def observation_status_to_internal(status: str | None) -> str:
    return OBSERVATION_STATUS_TO_INTERNAL.get(status or "", "PENDING")


def observation_status_to_fhir(status: str | None) -> str:
    return OBSERVATION_STATUS_TO_FHIR.get(status or "", "unknown")


def medication_status_to_internal(status: str | None) -> str:
    return MEDICATION_STATUS_TO_INTERNAL.get(status or "", "ACTIVE")


def medication_status_to_fhir(status: str | None) -> str:
    return MEDICATION_STATUS_TO_FHIR.get(status or "", "active")


# ---------------------------------------------------------------------------
# Typed intermediates
# ---------------------------------------------------------------------------


@dataclass
class PatientFields:
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    cpf: str | None = None
    cns: str | None = None
    birth_date: Any = None
    gender: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    is_active: bool | None = None
    clinic_id: str | None = None


@dataclass
class PractitionerFields:
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    crm: str | None = None
    crm_state: str | None = None
    specialty: str | None = None
    is_active: bool | None = None


@dataclass
class OrganizationFields:
    name: str | None = None
    cnpj: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    is_active: bool | None = None


@dataclass
class AppointmentFields:
    patient_id: str | None = None
    doctor_id: str | None = None
    clinic_id: str | None = None
    scheduled_at: Any = None
    end_time: Any = None
    duration: int | None = None
    status: str | None = None
    type: str | None = None
    notes: str | None = None


@dataclass
class ObservationFields:
    patient_id: str | None = None
    test_code: str | None = None
    test_name: str | None = None
    value: str | None = None
    unit: str | None = None
    reference_range: str | None = None
    status: str | None = None
    is_critical: bool | None = None
    notes: str | None = None
    performed_at: Any = None


@dataclass
class ConditionFields:
    patient_id: str | None = None
    consultation_id: str | None = None
    icd_code: str | None = None
    description: str | None = None
    notes: str | None = None


@dataclass
class PrescriptionItemFields:
    medication_code: str | None = None
    medication_name: str | None = None
    dosage: str | None = None
    unit: str | None = None
    frequency: str | None = None
    quantity: int | None = None
    duration: str | None = None
    instructions: str | None = None


@dataclass
class MedicationRequestFields:
    patient_id: str | None = None
    doctor_id: str | None = None
    status: str | None = None
    notes: str | None = None
    items: list[PrescriptionItemFields] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Shared element helpers
# ---------------------------------------------------------------------------


def _telecom_value(resource: dict[str, Any], system: str) -> str | None:
    for contact in resource.get("telecom") or []:
        if contact.get("system") == system:
            return contact.get("value")
    return None


def _telecom(phone: str | None, email: str | None, phone_use: str, email_use: str) -> list[dict[str, Any]]:
    contacts = []
    if phone:
        contacts.append({"system": "phone", "value": phone, "use": phone_use})
    if email:
        contacts.append({"system": "email", "value": email, "use": email_use})
    return contacts


def _address(record: Any, use: str) -> list[dict[str, Any]] | None:
    if not (record.address or record.city or record.state or record.zip_code):
        return None
    return [
        {
            "use": use,
            "type": "both",
            "line": [record.address] if record.address else None,
            "city": record.city,
            "state": record.state,
            "postalCode": record.zip_code,
            "country": "BR",
        }
    ]


def _address_fields(resource: dict[str, Any]) -> dict[str, Any]:
    address = (resource.get("address") or [{}])[0]
    lines = address.get("line") or []
    return {
        "address": ", ".join(lines) or None,
        "city": address.get("city"),
        "state": address.get("state"),
        "zip_code": dt.digits_only(address.get("postalCode")),
    }


def _first_name(resource: dict[str, Any]) -> str | None:
    names = resource.get("name") or []
    return dt.join_name(names[0]) if names else None


def _first_note(resource: dict[str, Any]) -> str | None:
    notes = resource.get("note") or []
    return notes[0].get("text") if notes else None


def _note(text: str | None) -> list[dict[str, Any]] | None:
    return [{"text": text}] if text else None


def _participant_id(resource: dict[str, Any], *resource_types: str) -> str | None:
    for participant in resource.get("participant") or []:
        actor = participant.get("actor")
        for resource_type in resource_types:
            resource_id = dt.reference_id(actor, resource_type)
            if resource_id:
                return resource_id
    return None


def _name_of(related: Any) -> str | None:
    return getattr(related, "name", None) if related is not None else None


class ResourceConverter:
    """Base class; ``base_url`` is the public FHIR base used in identifiers."""

    resource_type: str = ""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    def to_internal(self, resource: dict[str, Any]) -> Any:
        raise NotImplementedError

    def to_fhir(self, record: Any) -> dict[str, Any]:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Patient <-> Patient
# ---------------------------------------------------------------------------


class PatientConverter(ResourceConverter):
    resource_type = "Patient"

    def to_internal(self, resource: dict[str, Any]) -> PatientFields:
        identifiers = resource.get("identifier")
        cpf = dt.find_identifier(identifiers, dt.CPF_SYSTEM) or {}
        cns = dt.find_identifier(identifiers, dt.CNS_SYSTEM) or {}
        return PatientFields(
            name=_first_name(resource),
            email=_telecom_value(resource, "email"),
            phone=_telecom_value(resource, "phone"),
            cpf=dt.digits_only(cpf.get("value")),
            cns=dt.digits_only(cns.get("value")),
            birth_date=dt.parse_date(resource.get("birthDate"), "birthDate"),
            gender=dt.gender_to_internal(resource.get("gender")),
            is_active=resource.get("active") is not False,
            clinic_id=dt.reference_id(resource.get("managingOrganization"), "Organization"),
            **_address_fields(resource),
        )

    def to_fhir(self, record: Any) -> dict[str, Any]:
        identifiers = []
        if record.cpf:
            identifiers.append(dt.official_identifier(dt.CPF_SYSTEM, record.cpf))
        if record.cns:
            identifiers.append(dt.official_identifier(dt.CNS_SYSTEM, record.cns))
        identifiers.append(dt.self_identifier(self.base_url, self.resource_type, record.id))

        return dt.compact(
            {
                "resourceType": self.resource_type,
                "id": record.id,
                "meta": meta(record, "http://hl7.org/fhir/StructureDefinition/Patient"),
                "identifier": identifiers,
                "active": bool(record.is_active),
                "name": [dt.split_name(record.name)],
                "telecom": _telecom(record.phone, record.email, "mobile", "home"),
                "gender": dt.gender_to_fhir(record.gender),
                "birthDate": dt.format_date(record.birth_date),
                "address": _address(record, "home"),
                "managingOrganization": dt.reference("Organization", record.clinic_id),
            }
        )


# ---------------------------------------------------------------------------
# Doctor <-> Practitioner
# ---------------------------------------------------------------------------


def split_crm(identifier: dict[str, Any] | None) -> tuple[str | None, str]:
    """CRM digits and issuing state from ``"12345/RJ"`` style identifiers."""
    if not identifier:
        return None, "SP"
    value = identifier.get("value") or ""
    number, _, suffix = value.partition("/")
    state = suffix.strip().upper() or ((identifier.get("assigner") or {}).get("display") or "").strip().upper()
    return dt.digits_only(number), state or "SP"


class PractitionerConverter(ResourceConverter):
    resource_type = "Practitioner"

    def to_internal(self, resource: dict[str, Any]) -> PractitionerFields:
        crm, crm_state = split_crm(dt.find_identifier(resource.get("identifier"), dt.CRM_SYSTEM))
        qualification = (resource.get("qualification") or [{}])[0]
        return PractitionerFields(
            name=_first_name(resource),
            email=_telecom_value(resource, "email"),
            phone=_telecom_value(resource, "phone"),
            crm=crm,
            crm_state=crm_state,
            specialty=dt.concept_text(qualification.get("code")),
            is_active=resource.get("active") is not False,
        )

    def to_fhir(self, record: Any) -> dict[str, Any]:
        identifiers = []
        if record.crm:
            crm_state = record.crm_state or "SP"
            crm = dt.official_identifier(dt.CRM_SYSTEM, f"{record.crm}/{crm_state}")
            crm["assigner"] = {"display": crm_state}
            identifiers.append(crm)
        identifiers.append(dt.self_identifier(self.base_url, self.resource_type, record.id))

        qualification = None
        if record.specialty:
            qualification = [
                {
                    "code": dt.codeable_concept(
                        QUALIFICATION_SYSTEM, "MD", record.specialty, record.specialty
                    )
                }
            ]

        return dt.compact(
            {
                "resourceType": self.resource_type,
                "id": record.id,
                "meta": meta(record),
                "identifier": identifiers,
                "active": bool(record.is_active),
                "name": [dt.split_name(record.name)],
                "telecom": _telecom(record.phone, record.email, "work", "work"),
                "qualification": qualification,
            }
        )


# ---------------------------------------------------------------------------
# Clinic <-> Organization
# ---------------------------------------------------------------------------


class OrganizationConverter(ResourceConverter):
    resource_type = "Organization"

    def to_internal(self, resource: dict[str, Any]) -> OrganizationFields:
        cnpj = dt.find_identifier(resource.get("identifier"), dt.CNPJ_SYSTEM) or {}
        return OrganizationFields(
            name=resource.get("name"),
            cnpj=dt.digits_only(cnpj.get("value")),
            email=_telecom_value(resource, "email"),
            phone=_telecom_value(resource, "phone"),
            is_active=resource.get("active") is not False,
            **_address_fields(resource),
        )

    def to_fhir(self, record: Any) -> dict[str, Any]:
        identifiers = []
        if record.cnpj:
            identifiers.append(dt.official_identifier(dt.CNPJ_SYSTEM, record.cnpj))
        identifiers.append(dt.self_identifier(self.base_url, self.resource_type, record.id))

        return dt.compact(
            {
                "resourceType": self.resource_type,
                "id": record.id,
                "meta": meta(record),
                "identifier": identifiers,
                "active": bool(record.is_active),
                "type": [
                    dt.codeable_concept(
                        "http://terminology.hl7.org/CodeSystem/organization-type",
                        "prov",
                        "Healthcare Provider",
                    )
                ],
                "name": record.name,
                "telecom": _telecom(record.phone, record.email, "work", "work"),
                "address": _address(record, "work"),
            }
        )


# ---------------------------------------------------------------------------
# Appointment <-> Appointment
# ---------------------------------------------------------------------------


class AppointmentConverter(ResourceConverter):
    resource_type = "Appointment"

    def to_internal(self, resource: dict[str, Any]) -> AppointmentFields:
        service_types = resource.get("serviceType") or [{}]
        return AppointmentFields(
            patient_id=_participant_id(resource, "Patient"),
            doctor_id=_participant_id(resource, "Practitioner"),
            clinic_id=_participant_id(resource, "Location", "Organization"),
            scheduled_at=dt.parse_datetime(resource.get("start"), "start"),
            end_time=dt.parse_datetime(resource.get("end"), "end"),
            duration=resource.get("minutesDuration"),
            status=appointment_status_to_internal(resource.get("status")),
            type=(
                (resource.get("appointmentType") or {}).get("text")
                or service_types[0].get("text")
                or "CONSULTATION"
            ),
            notes=resource.get("comment"),
        )

    def to_fhir(self, record: Any) -> dict[str, Any]:
        participants = [
            {
                "actor": dt.reference("Patient", record.patient_id, _name_of(record.patient)),
                "status": "accepted",
            },
            {
                "actor": dt.reference("Practitioner", record.doctor_id, _name_of(record.doctor)),
                "status": "accepted",
            },
        ]
        if record.clinic_id:
            participants.append(
                {
                    "actor": dt.reference("Location", record.clinic_id, _name_of(record.clinic)),
                    "status": "accepted",
                }
            )

        return dt.compact(
            {
                "resourceType": self.resource_type,
                "id": record.id,
                "meta": meta(record),
                "status": appointment_status_to_fhir(record.status),
                "serviceType": [
                    dt.codeable_concept(SERVICE_TYPE_SYSTEM, record.type, record.type, record.type)
                ],
                "start": dt.format_instant(record.scheduled_at),
                "end": dt.format_instant(record.end_time),
                "minutesDuration": record.duration,
                "created": dt.format_instant(record.created_at),
                "comment": record.notes,
                "participant": participants,
            }
        )


# ---------------------------------------------------------------------------
# LabResult <-> Observation
# ---------------------------------------------------------------------------


def _range_bound(raw: str) -> dict[str, Any] | None:
    number = dt.parse_number(raw.strip())
    return {"value": number} if number is not None else None


def reference_range_to_fhir(value: str | None, unit: str | None) -> list[dict[str, Any]] | None:
    """``"3.5 - 5.0"`` -> ``[{low: {value: 3.5}, high: {value: 5.0}}]``; free text goes to ``text``."""
    if not value:
        return None
    low, sep, high = value.partition(" - ")
    low_q = _range_bound(low) if sep else None
    high_q = _range_bound(high) if sep else None
    if low_q is None and high_q is None:
        return [{"text": value}]
    for quantity in (low_q, high_q):
        if quantity is not None and unit:
            quantity["unit"] = unit
    return [{"low": low_q, "high": high_q}]


def reference_range_to_internal(ranges: list[dict[str, Any]] | None) -> str | None:
    if not ranges:
        return None
    first = ranges[0]
    low = dt.format_number((first.get("low") or {}).get("value"))
    high = dt.format_number((first.get("high") or {}).get("value"))
    if low is None and high is None:
        return first.get("text")
    return f"{low or ''} - {high or ''}"


class ObservationConverter(ResourceConverter):
    resource_type = "Observation"

    def to_internal(self, resource: dict[str, Any]) -> ObservationFields:
        code = resource.get("code") or {}
        coding = dt.first_coding(code, LOINC_SYSTEM)
        quantity = resource.get("valueQuantity")
        if quantity is not None:
            value = dt.format_number(quantity.get("value"))
            unit = quantity.get("unit")
        else:
            value = resource.get("valueString")
            unit = None
        ranges = resource.get("referenceRange") or []
        if unit is None and ranges:
            bounds = [ranges[0].get("low") or {}, ranges[0].get("high") or {}]
            unit = next((b["unit"] for b in bounds if b.get("unit")), None)

        critical = any(
            c.get("code") in ABNORMAL_INTERPRETATIONS
            for concept in resource.get("interpretation") or []
            for c in concept.get("coding") or []
        )
        return ObservationFields(
            patient_id=dt.reference_id(resource.get("subject"), "Patient"),
            test_code=coding.get("code"),
            test_name=code.get("text") or coding.get("display"),
            value=value,
            unit=unit,
            reference_range=reference_range_to_internal(ranges),
            status=observation_status_to_internal(resource.get("status")),
            is_critical=critical,
            notes=_first_note(resource),
            performed_at=dt.parse_datetime(resource.get("effectiveDateTime"), "effectiveDateTime"),
        )

    def to_fhir(self, record: Any) -> dict[str, Any]:
        number = dt.parse_number(record.value)
        value_quantity = value_string = None
        if number is not None:
            value_quantity = {
                "value": number,
                "unit": record.unit,
                "system": UCUM_SYSTEM if record.unit else None,
                "code": record.unit,
            }
        elif record.value:
            value_string = record.value

        interpretation = None
        if record.is_critical:
            interpretation = [dt.codeable_concept(INTERPRETATION_SYSTEM, "A", "Abnormal")]

        return dt.compact(
            {
                "resourceType": self.resource_type,
                "id": record.id,
                "meta": meta(record),
                "status": observation_status_to_fhir(record.status),
                "category": [
                    dt.codeable_concept(
                        "http://terminology.hl7.org/CodeSystem/observation-category",
                        "laboratory",
                        "Laboratory",
                    )
                ],
                "code": dt.codeable_concept(LOINC_SYSTEM, record.test_code, record.test_name, record.test_name),
                "subject": dt.reference("Patient", record.patient_id),
                "effectiveDateTime": dt.format_instant(record.performed_at),
                "issued": dt.format_instant(record.created_at),
                "valueQuantity": value_quantity,
                "valueString": value_string,
                "interpretation": interpretation,
                "referenceRange": reference_range_to_fhir(record.reference_range, record.unit),
                "note": _note(record.notes),
            }
        )


# ---------------------------------------------------------------------------
# Diagnosis <-> Condition
# ---------------------------------------------------------------------------


class ConditionConverter(ResourceConverter):
    resource_type = "Condition"

    def to_internal(self, resource: dict[str, Any]) -> ConditionFields:
        code = resource.get("code") or {}
        coding = dt.first_coding(code, ICD10_SYSTEM)
        return ConditionFields(
            patient_id=dt.reference_id(resource.get("subject"), "Patient"),
            consultation_id=dt.reference_id(resource.get("encounter"), "Encounter"),
            icd_code=coding.get("code"),
            description=code.get("text") or coding.get("display"),
            notes=_first_note(resource),
        )

    def to_fhir(self, record: Any) -> dict[str, Any]:
        return dt.compact(
            {
                "resourceType": self.resource_type,
                "id": record.id,
                "meta": meta(record),
                "clinicalStatus": dt.codeable_concept(
                    "http://terminology.hl7.org/CodeSystem/condition-clinical", "active", "Active"
                ),
                "verificationStatus": dt.codeable_concept(
                    "http://terminology.hl7.org/CodeSystem/condition-ver-status", "confirmed", "Confirmed"
                ),
                "category": [
                    dt.codeable_concept(
                        "http://terminology.hl7.org/CodeSystem/condition-category",
                        "encounter-diagnosis",
                        "Encounter Diagnosis",
                    )
                ],
                "code": dt.codeable_concept(ICD10_SYSTEM, record.icd_code, record.description, record.description),
                "subject": dt.reference("Patient", record.patient_id),
                "encounter": dt.reference("Encounter", record.consultation_id),
                "recordedDate": dt.format_instant(record.created_at),
                "note": _note(record.notes),
            }
        )


# ---------------------------------------------------------------------------
# Prescription <-> MedicationRequest
# ---------------------------------------------------------------------------


class MedicationRequestConverter(ResourceConverter):
    """A prescription becomes one MedicationRequest built from its first item."""

    resource_type = "MedicationRequest"

    def to_internal(self, resource: dict[str, Any]) -> MedicationRequestFields:
        fields = MedicationRequestFields(
            patient_id=dt.reference_id(resource.get("subject"), "Patient"),
            doctor_id=dt.reference_id(resource.get("requester"), "Practitioner"),
            status=medication_status_to_internal(resource.get("status")),
            notes=_first_note(resource),
        )
        item = self._item_fields(resource)
        if item is not None:
            fields.items.append(item)
        return fields

    def _item_fields(self, resource: dict[str, Any]) -> PrescriptionItemFields | None:
        medication = resource.get("medicationCodeableConcept")
        dosages = resource.get("dosageInstruction") or []
        dispense = resource.get("dispenseRequest") or {}
        if not medication and not dosages and not dispense:
            return None

        coding = dt.first_coding(medication, ANVISA_SYSTEM)
        dosage = dosages[0] if dosages else {}
        dose = ((dosage.get("doseAndRate") or [{}])[0]).get("doseQuantity") or {}
        quantity = dispense.get("quantity") or {}
        supply = dispense.get("expectedSupplyDuration") or {}
        quantity_value = quantity.get("value")
        return PrescriptionItemFields(
            medication_code=coding.get("code"),
            medication_name=dt.concept_text(medication),
            dosage=dt.format_number(dose.get("value")),
            unit=dose.get("unit") or quantity.get("unit"),
            frequency=(((dosage.get("timing") or {}).get("code")) or {}).get("text"),
            quantity=int(quantity_value) if quantity_value is not None else None,
            duration=dt.format_number(supply.get("value")),
            instructions=dosage.get("text"),
        )

    def to_fhir(self, record: Any) -> dict[str, Any]:
        item = record.items[0] if record.items else None
        medication = dosage_instruction = dispense_request = None
        if item is not None:
            medication = dt.codeable_concept(
                ANVISA_SYSTEM, item.medication_code, item.medication_name, item.medication_name
            )
            dose_value = dt.parse_number(item.dosage)
            dosage_instruction = [
                {
                    "text": item.instructions,
                    "timing": {"code": {"text": item.frequency}},
                    "doseAndRate": [
                        {
                            "doseQuantity": {"value": dose_value, "unit": item.unit}
                            if dose_value is not None
                            else None
                        }
                    ],
                }
            ]
            supply_days = dt.parse_number(item.duration)
            dispense_request = {
                "quantity": {"value": item.quantity, "unit": item.unit}
                if item.quantity is not None
                else None,
                "expectedSupplyDuration": {
                    "value": supply_days,
                    "unit": "d",
                    "system": UCUM_SYSTEM,
                    "code": "d",
                }
                if supply_days is not None
                else None,
            }

        return dt.compact(
            {
                "resourceType": self.resource_type,
                "id": record.id,
                "meta": meta(record),
                "status": medication_status_to_fhir(record.status),
                "intent": "order",
                "medicationCodeableConcept": medication,
                "subject": dt.reference("Patient", record.patient_id, _name_of(record.patient)),
                "authoredOn": dt.format_instant(record.created_at),
                "requester": dt.reference("Practitioner", record.doctor_id, _name_of(record.doctor)),
                "dosageInstruction": dosage_instruction,
                "dispenseRequest": dispense_request,
                "note": _note(record.notes),
            }
        )
