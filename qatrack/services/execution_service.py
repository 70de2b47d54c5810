"""
Execution recorder: immutable test runs with per-step completion.

Each execution stores the step list it was evaluated against
(``steps_snapshot``) and the case's ``steps_version``, so positional
step flags stay meaningful after the case is edited.

Recording a ``passed`` execution closes the parent case; ``failed``
reactivates it. The flip is audited like any other case edit and shares
the request's transaction.
"""

from __future__ import annotations

import logging

from qatrack.core.exceptions import NotFoundError, ValidationError
from qatrack.models import db
from qatrack.models.testing import (
    EXECUTION_CASE_STATUS,
    EXECUTION_STATUSES,
    TestCaseHistory,
    TestExecution,
)
from qatrack.services.history import TEST_CASE_TRACKED_FIELDS, diff_fields, record_changes
from qatrack.services.permission_service import require_membership
from qatrack.services.test_case_service import get_test_case

logger = logging.getLogger(__name__)

_STATUS_FIELD = tuple(f for f in TEST_CASE_TRACKED_FIELDS if f[0] == "status")


def normalize_steps_status(raw, step_count: int) -> list[dict]:
    """Coerce per-step flags into ``[{"completed": bool}]`` of ``step_count`` length.

    Items may be booleans or ``{"completed": ...}`` objects. A missing list
    means nothing was completed. A length mismatch is rejected rather than
    silently re-aligned.
    """
    if raw is None:
        return [{"completed": False} for _ in range(step_count)]
    if not isinstance(raw, list):
        raise ValidationError("steps_status must be a list", details={"steps_status": "expected a list"})
    if len(raw) != step_count:
        raise ValidationError(
            f"steps_status has {len(raw)} entries but the test case has {step_count} steps",
            details={"steps_status": {"expected": step_count, "received": len(raw)}},
        )

    normalized = []
    for idx, item in enumerate(raw):
        if isinstance(item, dict):
            value = item.get("completed", False)
        else:
            value = item
        if not isinstance(value, bool):
            raise ValidationError(
                f"steps_status[{idx}] must be a boolean",
                details={"steps_status": {idx: "boolean required"}},
            )
        normalized.append({"completed": value})
    return normalized


def list_executions(user_id: int, test_case_id: int):
    """Query of a case's executions, newest first."""
    tc = get_test_case(user_id, test_case_id)
    return (
        TestExecution.query.filter_by(test_case_id=tc.id)
        .order_by(TestExecution.execution_date.desc(), TestExecution.id.desc())
    )


def get_execution(user_id: int, execution_id: int) -> TestExecution:
    execution = db.session.get(TestExecution, execution_id)
    if execution is None:
        raise NotFoundError(resource="TestExecution", resource_id=execution_id)
    require_membership(user_id, execution.project_id)
    return execution


def record_execution(user_id: int, test_case_id: int, data: dict) -> TestExecution:
    """Record one execution attempt and apply the case status side effect."""
    tc = get_test_case(user_id, test_case_id)

    status = data.get("status") or "not_executed"
    if status not in EXECUTION_STATUSES:
        raise ValidationError(
            f"Invalid status. Must be one of: {', '.join(EXECUTION_STATUSES)}",
            details={"status": status},
        )

    steps = tc.step_list
    steps_status = normalize_steps_status(data.get("steps_status"), len(steps))

    execution = TestExecution(
        test_case_id=tc.id,
        project_id=tc.project_id,
        executed_by=user_id,
        status=status,
        actual_result=str(data.get("actual_result") or "").strip() or None,
        notes=str(data.get("notes") or "").strip() or None,
        steps_status=steps_status,
        steps_snapshot=steps,
        steps_version=tc.steps_version or 1,
    )
    db.session.add(execution)

    new_case_status = EXECUTION_CASE_STATUS.get(status)
    if new_case_status:
        changes = diff_fields({"status": tc.status}, {"status": new_case_status}, _STATUS_FIELD)
        if changes:
            tc.status = new_case_status
            tc.version = (tc.version or 1) + 1
            record_changes(TestCaseHistory, "test_case_id", tc.id, changes, user_id)
            logger.info("TestCase %d moved to %s by execution result %s", tc.id, new_case_status, status)

    db.session.flush()
    logger.info(
        "Execution %d recorded for TestCase %d: %s (%d%%)",
        execution.id, tc.id, status, execution.completion,
    )
    return execution
