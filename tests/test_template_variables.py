"""Tests for `$variable$` resolution and validation in TQ templates."""

from __future__ import annotations

from datetime import datetime

from paas.services.template_variables import (
    SUPPORTED_VARIABLES,
    VariableContext,
    extract_variables,
    format_long_date,
    resolve_variables,
    validate_variables,
    variable_values,
)

NOW = datetime(2025, 3, 5, 14, 30)


class TestFormatLongDate:
    def test_no_zero_padding(self):
        assert format_long_date(NOW) == "March 5, 2025"

    def test_two_digit_day(self):
        assert format_long_date(datetime(2024, 12, 25)) == "December 25, 2024"


class TestVariableValues:
    def test_all_supported_variables_present(self):
        values = variable_values(VariableContext(now=NOW))
        assert set(values) == set(SUPPORTED_VARIABLES)

    def test_patient_and_doctor(self):
        values = variable_values(VariableContext(
            patient_first_name="Maria",
            patient_last_name="Silva",
            has_patient=True,
            session_created_at=datetime(2025, 2, 1, 9, 0),
            me_first_name="Ana",
            me_last_name="Souza",
            clinic="Sorriso Clinic",
            now=NOW,
        ))
        assert values["patient.fullName"] == "Maria Silva"
        assert values["me.fullName"] == "Ana Souza"
        assert values["me.clinic"] == "Sorriso Clinic"
        assert values["date.now"] == "March 5, 2025"
        assert values["session.created_at"] == "February 1, 2025"

    def test_patient_without_name_falls_back(self):
        values = variable_values(VariableContext(has_patient=True, now=NOW))
        assert values["patient.fullName"] == "Patient"

    def test_no_patient_leaves_blank(self):
        values = variable_values(VariableContext(now=NOW))
        assert values["patient.fullName"] == ""
        assert values["patient.first_name"] == ""
        assert values["session.created_at"] == ""

    def test_doctor_without_name_falls_back(self):
        assert variable_values(VariableContext(now=NOW))["me.fullName"] == "Doctor"


class TestResolveVariables:
    def test_known_variables_replaced(self):
        text = "<p>Patient: $patient.fullName$, seen by $me.fullName$</p>"
        resolved = resolve_variables(text, {"patient.fullName": "Maria", "me.fullName": "Dr. Ana"})
        assert resolved == "<p>Patient: Maria, seen by Dr. Ana</p>"

    def test_unknown_variables_left_as_is(self):
        text = "Hello $patient.first_name$ $custom.field$"
        resolved = resolve_variables(text, {"patient.first_name": "Maria"})
        assert resolved == "Hello Maria $custom.field$"

    def test_repeated_variable(self):
        resolved = resolve_variables("$me.clinic$ / $me.clinic$", {"me.clinic": "X"})
        assert resolved == "X / X"

    def test_value_with_regex_characters(self):
        resolved = resolve_variables("$me.clinic$", {"me.clinic": r"A\1 & $5"})
        assert resolved == r"A\1 & $5"

    def test_empty_text(self):
        assert resolve_variables("", {"me.clinic": "X"}) == ""


class TestValidateVariables:
    def test_extract_deduplicates_in_order(self):
        text = "$date.now$ $me.clinic$ $date.now$"
        assert extract_variables(text) == ["date.now", "me.clinic"]

    def test_valid_template(self):
        result = validate_variables("<p>$patient.fullName$ on $date.now$</p>")
        assert result.is_valid
        assert result.unsupported_variables == []

    def test_unsupported_variable_reported(self):
        result = validate_variables("$patient.fullname$ $date.now$")
        assert not result.is_valid
        assert result.used_variables == ["patient.fullname", "date.now"]
        assert result.unsupported_variables == ["patient.fullname"]

    def test_no_variables(self):
        assert validate_variables("<p>Plain</p>").is_valid
