"""Tests for the FHIR search parameter translator – no database required."""

from datetime import date, datetime

import pytest

from clinic_fhir.fhir.datatypes import CNS_SYSTEM
from clinic_fhir.fhir.errors import InvalidResource
from clinic_fhir.fhir.search import (
    Predicate,
    SortKey,
    page_links,
    parse_date_param,
    translate,
)

URL = "http://test/fhir/Patient"


def test_defaults():
    query = translate("Patient", {})
    assert query.predicates == []
    assert query.count == 20
    assert query.offset == 0
    assert query.sort == [SortKey("created_at", descending=True)]


def test_appointment_default_sort_is_schedule():
    assert translate("Appointment", {}).sort == [SortKey("scheduled_at", descending=True)]


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "raw, op",
    [
        ("ge2024-01-01T10:00:00", "ge"),
        ("lt2024-01-01T10:00:00", "lt"),
        ("ne2024-01-01T10:00:00", "ne"),
        ("sa2024-01-01T10:00:00", "gt"),
        ("eb2024-01-01T10:00:00", "lt"),
        ("ap2024-01-01T10:00:00", "eq"),
        ("2024-01-01T10:00:00", "eq"),
    ],
)
def test_date_prefixes(raw, op):
    query = translate("Appointment", {"date": raw})
    assert query.predicates == [Predicate("scheduled_at", op, datetime(2024, 1, 1, 10, 0))]


def test_partial_dates_are_padded():
    assert parse_date_param("2024")[1:] == (datetime(2024, 1, 1), datetime(2025, 1, 1))
    assert parse_date_param("2024-02")[1:] == (datetime(2024, 2, 1), datetime(2024, 3, 1))
    assert parse_date_param("2024-12")[1:] == (datetime(2024, 12, 1), datetime(2025, 1, 1))
    assert parse_date_param("2024-02-29")[1:] == (datetime(2024, 2, 29), datetime(2024, 3, 1))


def test_eq_on_a_day_covers_the_whole_day():
    query = translate("Observation", {"date": "2024-03-05"})
    assert query.predicates == [
        Predicate("performed_at", "ge", datetime(2024, 3, 5)),
        Predicate("performed_at", "lt", datetime(2024, 3, 6)),
    ]


def test_timezone_offsets_are_normalised_to_utc():
    query = translate("Appointment", {"date": "gt2024-01-01T10:00:00-03:00"})
    assert query.predicates == [Predicate("scheduled_at", "gt", datetime(2024, 1, 1, 13, 0))]


def test_birthdate_compares_dates():
    query = translate("Patient", {"birthdate": "le1990-05-17"})
    assert query.predicates == [Predicate("birth_date", "le", date(1990, 5, 17))]


@pytest.mark.parametrize("raw", ["yesterday", "ge2024-13-01", "xx2024-01-01", "2024-01-01Tnoon"])
def test_unparseable_dates_are_invalid(raw):
    with pytest.raises(InvalidResource):
        translate("Appointment", {"date": raw})


@pytest.mark.parametrize("raw", ["9999", "9999-12", "9999-12-31", "ge9999-12-31T23:00:00-05:00"])
def test_dates_past_the_calendar_end_are_invalid(raw):
    with pytest.raises(InvalidResource):
        translate("Appointment", {"date": raw})


def test_last_representable_instant_is_searchable():
    query = translate("Appointment", {"date": "le9999-12-31T23:59:59"})
    assert query.predicates == [Predicate("scheduled_at", "le", datetime(9999, 12, 31, 23, 59, 59))]


def test_repeated_parameters_are_anded():
    query = translate(
        "Appointment",
        [("date", "ge2024-01-01T00:00:00"), ("date", "lt2024-02-01T00:00:00")],
    )
    assert query.predicates == [
        Predicate("scheduled_at", "ge", datetime(2024, 1, 1)),
        Predicate("scheduled_at", "lt", datetime(2024, 2, 1)),
    ]


def test_mapping_with_list_values():
    query = translate("Patient", {"name": ["ana", "silva"]})
    assert query.predicates == [
        Predicate("name", "contains", "ana"),
        Predicate("name", "contains", "silva"),
    ]


# ---------------------------------------------------------------------------
# References, identifiers and tokens
# ---------------------------------------------------------------------------

def test_reference_with_or_without_type_is_the_same():
    with_type = translate("Observation", {"patient": "Patient/123"})
    bare = translate("Observation", {"subject": "123"})
    absolute = translate("Observation", {"patient": "http://other/fhir/Patient/123"})
    assert with_type.predicates == bare.predicates == absolute.predicates
    assert with_type.predicates == [Predicate("patient_id", "eq", "123")]


def test_identifier_system_picks_column():
    query = translate("Patient", {"identifier": f"{CNS_SYSTEM}|898 0011 6000 0000"})
    assert query.predicates == [Predicate("cns", "eq", "898001160000000")]


def test_bare_identifier_keeps_digits():
    query = translate("Patient", {"identifier": "123.456.789-01"})
    assert query.predicates == [Predicate("cpf", "eq", "12345678901")]


@pytest.mark.parametrize("raw", ["", "abc", "http://example.org/other|123"])
def test_bad_identifiers_are_invalid(raw):
    with pytest.raises(InvalidResource):
        translate("Patient", {"identifier": raw})


def test_gender_goes_through_the_converter_table():
    assert translate("Patient", {"gender": "unknown"}).predicates == [
        Predicate("gender", "eq", "NOT_SPECIFIED")
    ]
    with pytest.raises(InvalidResource):
        translate("Patient", {"gender": "robot"})


def test_status_token_matches_every_internal_state_with_that_code():
    query = translate("Appointment", {"status": "booked"})
    assert query.predicates == [Predicate("status", "in", ["CONFIRMED", "SCHEDULED"])]
    with pytest.raises(InvalidResource):
        translate("Appointment", {"status": "whatever"})


def test_active_must_be_boolean():
    assert translate("Patient", {"active": "false"}).predicates == [Predicate("is_active", "eq", False)]
    with pytest.raises(InvalidResource):
        translate("Patient", {"active": "maybe"})


def test_string_exact_modifier():
    query = translate("Organization", {"name:exact": "Clínica Central"})
    assert query.predicates == [Predicate("name", "eq", "Clínica Central")]
    with pytest.raises(InvalidResource):
        translate("Organization", {"name:missing": "true"})


def test_code_token_accepts_system_pipe_code():
    query = translate("Observation", {"code": "http://loinc.org|2345-7"})
    assert query.predicates == [Predicate("test_code", "eq", "2345-7")]


def test_unknown_parameters_ignored_but_kept_for_links():
    query = translate("Patient", {"favourite-colour": "blue", "name": "ana"})
    assert query.predicates == [Predicate("name", "contains", "ana")]
    assert ("favourite-colour", "blue") in query.params


def test_last_updated_available_everywhere():
    query = translate("Condition", {"_lastUpdated": "gt2024-01-01T00:00:00"})
    assert query.predicates == [Predicate("updated_at", "gt", datetime(2024, 1, 1))]


# ---------------------------------------------------------------------------
# Sort and paging
# ---------------------------------------------------------------------------

def test_sort_keys_applied_left_to_right():
    query = translate("Patient", {"_sort": "-birthdate,name"})
    assert query.sort == [SortKey("birth_date", True), SortKey("name", False)]


def test_unknown_sort_key_is_invalid():
    with pytest.raises(InvalidResource):
        translate("Patient", {"_sort": "shoe_size"})


@pytest.mark.parametrize("params", [{"_count": "0"}, {"_count": "101"}, {"_count": "ten"}, {"_offset": "-1"}])
def test_paging_bounds(params):
    with pytest.raises(InvalidResource):
        translate("Patient", params)


def test_page_links_next_and_previous():
    query = translate("Patient", [("name", "ana"), ("_count", "10"), ("_offset", "10")])
    links = {link["relation"]: link["url"] for link in page_links(URL, query, total=35)}

    assert links["self"] == f"{URL}?name=ana&_count=10&_offset=10"
    assert links["next"] == f"{URL}?name=ana&_count=10&_offset=20"
    assert links["previous"] == f"{URL}?name=ana&_count=10&_offset=0"


def test_page_links_first_and_last_pages():
    first = translate("Patient", {"_count": "10"})
    relations = [link["relation"] for link in page_links(URL, first, total=35)]
    assert relations == ["self", "next"]

    last = translate("Patient", {"_count": "10", "_offset": "30"})
    links = page_links(URL, last, total=35)
    assert [link["relation"] for link in links] == ["self", "previous"]
    assert links[1]["url"].endswith("_offset=20")


def test_self_link_without_params_has_no_query_string():
    links = page_links(URL, translate("Patient", {}), total=0)
    assert links == [{"relation": "self", "url": URL}]
