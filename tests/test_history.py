"""
Pure-function tests: change diffing, completion rounding and the bug
status transition guard.
"""

import pytest

from qatrack.models.bug import VALID_TRANSITIONS, validate_bug_transition
from qatrack.models.testing import completion_percentage
from qatrack.services.history import (
    BUG_TRACKED_FIELDS,
    TEST_CASE_TRACKED_FIELDS,
    FieldChange,
    diff_fields,
    serialize_value,
)
from qatrack.services.execution_service import normalize_steps_status
from qatrack.core.exceptions import ValidationError
from qatrack.utils.helpers import round_half_up


class TestDiffFields:
    def test_changed_field_yields_one_change(self):
        changes = diff_fields({"status": "open"}, {"status": "resolved"}, BUG_TRACKED_FIELDS)
        assert changes == [FieldChange("status", "Estado", "open", "resolved")]

    def test_equal_values_yield_nothing(self):
        old = {"status": "open", "priority": "high"}
        assert diff_fields(old, dict(old), BUG_TRACKED_FIELDS) == []

    def test_fields_absent_from_update_are_skipped(self):
        changes = diff_fields(
            {"status": "open", "priority": "low"}, {"priority": "high"}, BUG_TRACKED_FIELDS,
        )
        assert [c.field for c in changes] == ["priority"]

    def test_changes_follow_tracked_field_order(self):
        changes = diff_fields(
            {"status": "open", "severity": "minor", "priority": "low"},
            {"severity": "major", "status": "in_progress", "priority": "high"},
            BUG_TRACKED_FIELDS,
        )
        assert [c.field_name for c in changes] == ["Estado", "Prioridad", "Severidad"]

    def test_no_type_coercion(self):
        changes = diff_fields({"sprint": 0}, {"sprint": ""}, TEST_CASE_TRACKED_FIELDS)
        assert len(changes) == 1
        assert changes[0].old_value == "0"
        assert changes[0].new_value == ""

    def test_none_to_value(self):
        changes = diff_fields({"assigned_to": None}, {"assigned_to": 7}, BUG_TRACKED_FIELDS)
        assert changes[0].old_value is None
        assert changes[0].new_value == "7"

    def test_steps_compared_as_json(self):
        steps = [{"action": "Open page", "expected": "Page shown"}]
        assert diff_fields({"steps": steps}, {"steps": list(steps)}, TEST_CASE_TRACKED_FIELDS) == []

        changes = diff_fields(
            {"steps": steps}, {"steps": steps + [{"action": "Click", "expected": ""}]},
            TEST_CASE_TRACKED_FIELDS,
        )
        assert len(changes) == 1
        assert changes[0].field_name == "Pasos"
        assert changes[0].new_value.startswith("[{")


class TestSerializeValue:
    @pytest.mark.parametrize("value,expected", [
        (None, None),
        ("text", "text"),
        (3, "3"),
        (True, "true"),
        (False, "false"),
        ([1, 2], "[1, 2]"),
        ({"a": "é"}, '{"a": "é"}'),
    ])
    def test_serialize(self, value, expected):
        assert serialize_value(value) == expected


class TestCompletion:
    def test_half_of_four_steps(self):
        status = [{"completed": True}, {"completed": False}, {"completed": True}, {"completed": False}]
        assert completion_percentage(status, 4) == 50

    def test_empty_step_list_is_zero(self):
        assert completion_percentage([], 0) == 0

    def test_rounds_half_up(self):
        # 1/8 = 12.5 % → 13, where round() would give 12
        assert completion_percentage([True] + [False] * 7, 8) == 13
        assert completion_percentage([True, False, False], 3) == 33
        assert completion_percentage([True, True, False], 3) == 67

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(2.4999) == 2
        assert round_half_up(0) == 0


class TestNormalizeStepsStatus:
    def test_missing_means_nothing_completed(self):
        assert normalize_steps_status(None, 2) == [{"completed": False}, {"completed": False}]

    def test_accepts_bools_and_objects(self):
        assert normalize_steps_status([True, {"completed": False}], 2) == [
            {"completed": True}, {"completed": False},
        ]

    def test_length_mismatch_rejected(self):
        with pytest.raises(ValidationError):
            normalize_steps_status([True], 3)

    def test_non_boolean_rejected(self):
        with pytest.raises(ValidationError):
            normalize_steps_status(["yes"], 1)


class TestBugTransitions:
    @pytest.mark.parametrize("old,new", [
        ("open", "in_progress"),
        ("open", "resolved"),
        ("in_progress", "open"),
        ("resolved", "reopened"),
        ("closed", "reopened"),
        ("reopened", "in_progress"),
    ])
    def test_allowed(self, old, new):
        assert validate_bug_transition(old, new)

    @pytest.mark.parametrize("old,new", [
        ("open", "reopened"),
        ("closed", "open"),
        ("closed", "resolved"),
        ("resolved", "open"),
        ("unknown", "open"),
    ])
    def test_rejected(self, old, new):
        assert not validate_bug_transition(old, new)

    def test_every_status_has_an_exit(self):
        assert all(VALID_TRANSITIONS[s] for s in VALID_TRANSITIONS)
