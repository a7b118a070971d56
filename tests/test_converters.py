"""Tests for the FHIR <-> internal converters – no database required."""

from dataclasses import asdict
from datetime import date, datetime

import pytest

from clinic_fhir.fhir import converters
from clinic_fhir.fhir.datatypes import CNS_SYSTEM, CPF_SYSTEM, CRM_SYSTEM, join_name, split_name
from clinic_fhir.fhir.errors import InvalidResource
from clinic_fhir.models import clinical

BASE_URL = "http://test/fhir"

CREATED = datetime(2024, 1, 1, 12, 0)
UPDATED = datetime(2024, 1, 2, 8, 30)


def _bookkeeping(record_id):
    return {"id": record_id, "version": 1, "created_at": CREATED, "updated_at": UPDATED}


def _make_patient(**overrides):
    values = {
        **_bookkeeping("pat-1"),
        "name": "Maria da Silva",
        "email": "maria@example.com",
        "phone": "11999990000",
        "cpf": "12345678901",
        "cns": "898001160000000",
        "birth_date": date(1990, 5, 17),
        "gender": "FEMALE",
        "address": "Rua Augusta, 100",
        "city": "São Paulo",
        "state": "SP",
        "zip_code": "01310100",
        "is_active": True,
        "clinic_id": "clinic-1",
    }
    values.update(overrides)
    return clinical.Patient(**values)


def _make_doctor(**overrides):
    values = {
        **_bookkeeping("doc-1"),
        "name": "João Pereira",
        "email": "joao@example.com",
        "phone": "2133334444",
        "crm": "123456",
        "crm_state": "RJ",
        "specialty": "Cardiologia",
        "is_active": True,
    }
    values.update(overrides)
    return clinical.Doctor(**values)


def _make_lab_result(**overrides):
    values = {
        **_bookkeeping("obs-1"),
        "patient_id": "pat-1",
        "test_code": "2345-7",
        "test_name": "Glucose",
        "value": "5.0",
        "unit": "mmol/L",
        "reference_range": "3.5 - 5.0",
        "status": "COMPLETED",
        "is_critical": True,
        "notes": "Fasting",
        "performed_at": datetime(2024, 3, 1, 7, 45),
    }
    values.update(overrides)
    return clinical.LabResult(**values)


def _rebuild(model, original, fields):
    """New row carrying ``original``'s bookkeeping and the converted fields."""
    return model(
        id=original.id,
        version=original.version,
        created_at=original.created_at,
        updated_at=original.updated_at,
        **asdict(fields),
    )


# ---------------------------------------------------------------------------
# Round trips
# ---------------------------------------------------------------------------

def test_patient_round_trip_is_fixed_point():
    conv = converters.PatientConverter(BASE_URL)
    row = _make_patient()
    first = conv.to_fhir(row)
    second = conv.to_fhir(_rebuild(clinical.Patient, row, conv.to_internal(first)))
    assert second == first


def test_practitioner_round_trip_is_fixed_point():
    conv = converters.PractitionerConverter(BASE_URL)
    row = _make_doctor()
    first = conv.to_fhir(row)
    second = conv.to_fhir(_rebuild(clinical.Doctor, row, conv.to_internal(first)))
    assert second == first


def test_organization_round_trip_is_fixed_point():
    conv = converters.OrganizationConverter(BASE_URL)
    row = clinical.Clinic(
        **_bookkeeping("clinic-1"),
        name="Clínica Central",
        cnpj="11222333000181",
        email="contato@central.example",
        phone="1130304040",
        address="Av. Paulista, 1000",
        city="São Paulo",
        state="SP",
        zip_code="01310100",
        is_active=True,
    )
    first = conv.to_fhir(row)
    second = conv.to_fhir(_rebuild(clinical.Clinic, row, conv.to_internal(first)))
    assert second == first


def test_appointment_round_trip_is_fixed_point():
    conv = converters.AppointmentConverter(BASE_URL)
    row = clinical.Appointment(
        **_bookkeeping("appt-1"),
        patient_id="pat-1",
        doctor_id="doc-1",
        clinic_id="clinic-1",
        scheduled_at=datetime(2024, 3, 10, 14, 0),
        end_time=datetime(2024, 3, 10, 14, 30),
        duration=30,
        status="SCHEDULED",
        type="FOLLOW_UP",
        notes="Bring previous exams",
    )
    first = conv.to_fhir(row)
    second = conv.to_fhir(_rebuild(clinical.Appointment, row, conv.to_internal(first)))
    assert second == first


def test_observation_round_trip_is_fixed_point():
    conv = converters.ObservationConverter(BASE_URL)
    row = _make_lab_result()
    first = conv.to_fhir(row)
    second = conv.to_fhir(_rebuild(clinical.LabResult, row, conv.to_internal(first)))
    assert second == first


def test_condition_round_trip_is_fixed_point():
    conv = converters.ConditionConverter(BASE_URL)
    row = clinical.Diagnosis(
        **_bookkeeping("cond-1"),
        patient_id="pat-1",
        consultation_id="enc-1",
        icd_code="E11.9",
        description="Type 2 diabetes mellitus",
        notes="Diet controlled",
    )
    first = conv.to_fhir(row)
    second = conv.to_fhir(_rebuild(clinical.Diagnosis, row, conv.to_internal(first)))
    assert second == first


def test_medication_request_round_trip_is_fixed_point():
    conv = converters.MedicationRequestConverter(BASE_URL)
    row = clinical.Prescription(
        **_bookkeeping("rx-1"),
        patient_id="pat-1",
        doctor_id="doc-1",
        status="ACTIVE",
        notes="Review in 7 days",
        items=[
            clinical.PrescriptionItem(
                medication_code="MED-001",
                medication_name="Amoxicilina 500mg",
                dosage="500",
                unit="mg",
                frequency="8/8h",
                quantity=21,
                duration="7",
                instructions="Tomar após as refeições",
            )
        ],
    )
    first = conv.to_fhir(row)

    fields = asdict(conv.to_internal(first))
    items = [clinical.PrescriptionItem(**item) for item in fields.pop("items")]
    rebuilt = clinical.Prescription(
        id=row.id, version=1, created_at=CREATED, updated_at=UPDATED, items=items, **fields
    )
    assert conv.to_fhir(rebuilt) == first


# ---------------------------------------------------------------------------
# Patient details
# ---------------------------------------------------------------------------

def test_patient_identifiers_keep_system_and_digits():
    conv = converters.PatientConverter(BASE_URL)
    resource = conv.to_fhir(_make_patient())

    by_system = {i["system"]: i for i in resource["identifier"]}
    assert by_system[CPF_SYSTEM] == {"use": "official", "system": CPF_SYSTEM, "value": "12345678901"}
    assert by_system[CNS_SYSTEM]["value"] == "898001160000000"
    assert by_system[f"{BASE_URL}/NamingSystem/patient-id"] == {
        "use": "usual",
        "system": f"{BASE_URL}/NamingSystem/patient-id",
        "value": "pat-1",
    }


def test_patient_identifier_punctuation_is_stripped():
    conv = converters.PatientConverter(BASE_URL)
    fields = conv.to_internal(
        {
            "resourceType": "Patient",
            "name": [{"text": "Ana Souza"}],
            "identifier": [{"system": CPF_SYSTEM, "value": "123.456.789-01"}],
            "address": [{"line": ["Rua A", "apto 2"], "postalCode": "01310-100"}],
        }
    )
    assert fields.cpf == "12345678901"
    assert fields.cns is None
    assert fields.address == "Rua A, apto 2"
    assert fields.zip_code == "01310100"


def test_patient_defaults_for_missing_optional_elements():
    conv = converters.PatientConverter(BASE_URL)
    fields = conv.to_internal({"resourceType": "Patient", "name": [{"family": "Souza"}]})
    assert fields.gender == "NOT_SPECIFIED"
    assert fields.is_active is True
    assert fields.birth_date is None


def test_patient_output_omits_empty_elements():
    conv = converters.PatientConverter(BASE_URL)
    resource = conv.to_fhir(
        _make_patient(email=None, phone=None, cpf=None, cns=None, address=None,
                      city=None, state=None, zip_code=None, clinic_id=None, birth_date=None)
    )
    assert "telecom" not in resource
    assert "address" not in resource
    assert "managingOrganization" not in resource
    assert "birthDate" not in resource
    assert len(resource["identifier"]) == 1


def test_invalid_birth_date_rejected():
    conv = converters.PatientConverter(BASE_URL)
    with pytest.raises(InvalidResource):
        conv.to_internal({"resourceType": "Patient", "name": [{"text": "X"}], "birthDate": "1990-02-30"})


def test_patient_meta_carries_version_and_last_updated():
    conv = converters.PatientConverter(BASE_URL)
    resource = conv.to_fhir(_make_patient(version=3))
    assert resource["meta"]["versionId"] == "3"
    assert resource["meta"]["lastUpdated"] == "2024-01-02T08:30:00+00:00"


# ---------------------------------------------------------------------------
# Names and gender
# ---------------------------------------------------------------------------

def test_name_split_last_token_is_family():
    # lossy: particles end up in given
    name = split_name("Maria da Silva")
    assert name["family"] == "Silva"
    assert name["given"] == ["Maria", "da"]
    assert name["text"] == "Maria da Silva"


def test_name_join_prefers_text_then_family_given():
    assert join_name({"text": "Maria da Silva", "family": "X"}) == "Maria da Silva"
    assert join_name({"given": ["Maria"], "family": "Silva"}) == "Silva Maria"
    assert join_name({"given": ["Maria", "da"], "family": "Silva"}) == "Silva Maria da"
    assert join_name({"family": "Silva"}) == "Silva"
    assert join_name({}) is None


def test_name_join_ignores_blank_parts():
    assert join_name({"text": "  Ana Souza "}) == "Ana Souza"
    assert join_name({"text": "   ", "family": "Souza"}) == "Souza"
    assert join_name({"text": "   "}) is None
    assert join_name({"given": []}) is None
    assert join_name({"family": "", "given": ["", " "]}) is None


def test_structured_name_is_stored_family_first():
    conv = converters.PatientConverter(BASE_URL)
    fields = conv.to_internal({"resourceType": "Patient", "name": [{"family": "Silva", "given": ["Maria"]}]})
    assert fields.name == "Silva Maria"


def test_single_token_name():
    name = split_name("Pelé")
    assert name["family"] == "Pelé"
    assert name["given"] == []


def test_unknown_gender_maps_to_not_specified():
    conv = converters.PatientConverter(BASE_URL)
    fields = conv.to_internal({"resourceType": "Patient", "name": [{"text": "X"}], "gender": "robot"})
    assert fields.gender == "NOT_SPECIFIED"
    assert conv.to_fhir(_make_patient(gender="NOT_SPECIFIED"))["gender"] == "unknown"


# ---------------------------------------------------------------------------
# Practitioner CRM
# ---------------------------------------------------------------------------

def test_crm_emitted_with_state_suffix_and_assigner():
    conv = converters.PractitionerConverter(BASE_URL)
    resource = conv.to_fhir(_make_doctor())
    crm = next(i for i in resource["identifier"] if i["system"] == CRM_SYSTEM)
    assert crm["value"] == "123456/RJ"
    assert crm["assigner"] == {"display": "RJ"}


def test_crm_state_from_suffix_then_assigner_then_default():
    conv = converters.PractitionerConverter(BASE_URL)

    def crm_of(identifier):
        fields = conv.to_internal(
            {"resourceType": "Practitioner", "name": [{"text": "X"}], "identifier": [identifier]}
        )
        return fields.crm, fields.crm_state

    assert crm_of({"system": CRM_SYSTEM, "value": "98765/mg"}) == ("98765", "MG")
    assert crm_of({"system": CRM_SYSTEM, "value": "98765", "assigner": {"display": "BA"}}) == ("98765", "BA")
    assert crm_of({"system": CRM_SYSTEM, "value": "98765"}) == ("98765", "SP")


# ---------------------------------------------------------------------------
# Appointment
# ---------------------------------------------------------------------------

def _appointment_resource(**overrides):
    resource = {
        "resourceType": "Appointment",
        "status": "booked",
        "start": "2024-03-10T11:00:00-03:00",
        "participant": [
            {"actor": {"reference": "Practitioner/doc-1"}},
            {"actor": {"reference": "Patient/pat-1"}},
            {"actor": {"reference": "Organization/clinic-9"}},
        ],
    }
    resource.update(overrides)
    return resource


def test_appointment_participants_resolved_by_reference_prefix():
    fields = converters.AppointmentConverter(BASE_URL).to_internal(_appointment_resource())
    assert fields.patient_id == "pat-1"
    assert fields.doctor_id == "doc-1"
    assert fields.clinic_id == "clinic-9"
    # stored as naive UTC
    assert fields.scheduled_at == datetime(2024, 3, 10, 14, 0)


def test_appointment_type_fallbacks():
    conv = converters.AppointmentConverter(BASE_URL)
    assert conv.to_internal(_appointment_resource(appointmentType={"text": "EXAM"})).type == "EXAM"
    assert conv.to_internal(_appointment_resource(serviceType=[{"text": "RETURN"}])).type == "RETURN"
    assert conv.to_internal(_appointment_resource()).type == "CONSULTATION"


def test_location_participant_only_when_clinic_set():
    conv = converters.AppointmentConverter(BASE_URL)
    row = clinical.Appointment(
        **_bookkeeping("appt-1"),
        patient_id="pat-1",
        doctor_id="doc-1",
        clinic_id=None,
        scheduled_at=datetime(2024, 3, 10, 14, 0),
        status="PENDING",
        type="CONSULTATION",
    )
    refs = [p["actor"]["reference"] for p in conv.to_fhir(row)["participant"]]
    assert refs == ["Patient/pat-1", "Practitioner/doc-1"]


@pytest.mark.parametrize(
    "fhir_status, internal",
    [
        ("proposed", "PENDING"),
        ("booked", "SCHEDULED"),
        ("checked-in", "CONFIRMED"),
        ("fulfilled", "COMPLETED"),
        ("noshow", "NO_SHOW"),
        ("entered-in-error", "PENDING"),
    ],
)
def test_appointment_status_to_internal(fhir_status, internal):
    assert converters.appointment_status_to_internal(fhir_status) == internal


def test_status_tables_have_conservative_defaults():
    assert converters.appointment_status_to_fhir("SOMETHING") == "pending"
    assert converters.appointment_status_to_fhir("IN_PROGRESS") == "arrived"
    assert converters.observation_status_to_fhir("SOMETHING") == "unknown"
    assert converters.observation_status_to_internal("amended") == "COMPLETED"
    assert converters.medication_status_to_internal("stopped") == "CANCELLED"
    assert converters.medication_status_to_internal("draft") == "ACTIVE"
    assert converters.medication_status_to_fhir(None) == "active"


# ---------------------------------------------------------------------------
# Observation
# ---------------------------------------------------------------------------

def test_numeric_value_becomes_value_quantity():
    resource = converters.ObservationConverter(BASE_URL).to_fhir(_make_lab_result(value="7.25"))
    assert resource["valueQuantity"]["value"] == 7.25
    assert resource["valueQuantity"]["unit"] == "mmol/L"
    assert "valueString" not in resource


def test_free_text_value_becomes_value_string():
    resource = converters.ObservationConverter(BASE_URL).to_fhir(_make_lab_result(value="positive"))
    assert resource["valueString"] == "positive"
    assert "valueQuantity" not in resource


@pytest.mark.parametrize("value", ["nan", "inf", "5 mg"])
def test_non_finite_or_mixed_values_stay_strings(value):
    resource = converters.ObservationConverter(BASE_URL).to_fhir(_make_lab_result(value=value))
    assert resource["valueString"] == value


def test_critical_flag_from_interpretation_codes():
    conv = converters.ObservationConverter(BASE_URL)
    base = {
        "resourceType": "Observation",
        "status": "final",
        "code": {"text": "Potassium"},
        "subject": {"reference": "Patient/pat-1"},
    }
    high = {**base, "interpretation": [{"coding": [{"code": "HH"}]}]}
    normal = {**base, "interpretation": [{"coding": [{"code": "N"}]}]}
    assert conv.to_internal(high).is_critical is True
    assert conv.to_internal(normal).is_critical is False
    assert conv.to_internal(base).is_critical is False


def test_reference_range_both_ways():
    resource = converters.ObservationConverter(BASE_URL).to_fhir(_make_lab_result())
    assert resource["referenceRange"] == [
        {"low": {"value": 3.5, "unit": "mmol/L"}, "high": {"value": 5.0, "unit": "mmol/L"}}
    ]
    assert converters.reference_range_to_internal(resource["referenceRange"]) == "3.5 - 5"
    assert converters.reference_range_to_fhir("negative", None) == [{"text": "negative"}]


# ---------------------------------------------------------------------------
# Condition / MedicationRequest inbound
# ---------------------------------------------------------------------------

def test_condition_to_internal_prefers_icd10_coding():
    fields = converters.ConditionConverter(BASE_URL).to_internal(
        {
            "resourceType": "Condition",
            "subject": {"reference": "Patient/pat-1"},
            "encounter": {"reference": "Encounter/enc-7"},
            "code": {
                "coding": [
                    {"system": "http://snomed.info/sct", "code": "44054006"},
                    {"system": converters.ICD10_SYSTEM, "code": "E11", "display": "Diabetes"},
                ]
            },
        }
    )
    assert fields.icd_code == "E11"
    assert fields.description == "Diabetes"
    assert fields.patient_id == "pat-1"
    assert fields.consultation_id == "enc-7"


def test_condition_status_is_always_active_confirmed():
    row = clinical.Diagnosis(**_bookkeeping("cond-1"), patient_id="pat-1", icd_code="J45")
    resource = converters.ConditionConverter(BASE_URL).to_fhir(row)
    assert resource["clinicalStatus"]["coding"][0]["code"] == "active"
    assert resource["verificationStatus"]["coding"][0]["code"] == "confirmed"


def test_medication_request_without_items():
    row = clinical.Prescription(**_bookkeeping("rx-2"), patient_id="pat-1", doctor_id="doc-1", status="CANCELLED")
    resource = converters.MedicationRequestConverter(BASE_URL).to_fhir(row)
    assert resource["status"] == "cancelled"
    assert resource["intent"] == "order"
    assert resource["requester"] == {"reference": "Practitioner/doc-1"}
    assert "medicationCodeableConcept" not in resource
    assert "dosageInstruction" not in resource
