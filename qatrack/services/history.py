"""
Change history recorder: field-level audit rows for bugs and test cases.

``diff_fields`` is pure: it compares an old and a new mapping over a fixed,
ordered list of tracked fields and yields one FieldChange per field whose
values differ under strict ``!=``. No type coercion is applied, so ``0``
and ``""`` count as a change.

Values are persisted as text. ``None`` stays NULL; lists and dicts are
compared and stored in their JSON serialization, never diffed per item.

``record_changes`` adds the rows to the current session without flushing
or committing; the caller's transaction covers the entity update and its
history together.
"""

import json
import logging
from typing import Iterable, Mapping, NamedTuple

from qatrack.models import db

logger = logging.getLogger(__name__)


class FieldChange(NamedTuple):
    field: str
    field_name: str  # display label persisted in history rows
    old_value: str | None
    new_value: str | None


# ── Tracked fields (attribute, label) ────────────────────────────────────

BUG_TRACKED_FIELDS = (
    ("status", "Estado"),
    ("priority", "Prioridad"),
    ("severity", "Severidad"),
    ("assigned_to", "Asignado a"),
)

TEST_CASE_TRACKED_FIELDS = (
    ("project_id", "Proyecto"),
    ("title", "Título"),
    ("description", "Descripción"),
    ("preconditions", "Precondiciones"),
    ("steps", "Pasos"),
    ("expected_result", "Resultado esperado"),
    ("status", "Estado"),
    ("priority", "Prioridad"),
    ("month", "Mes"),
    ("sprint", "Sprint"),
    ("story_id", "Historia"),
)

UNASSIGNED_LABEL = "Sin asignar"

# Bug rows written when a linked test case leaves the bug's project
TEST_CASE_LINK_LABEL = "Caso de prueba"


def serialize_value(value) -> str | None:
    """Text form of a field value as stored in old_value/new_value."""
    if value is None:
        return None
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def diff_fields(
    old: Mapping,
    new: Mapping,
    tracked: Iterable[tuple[str, str]],
) -> list[FieldChange]:
    """Compare ``old`` and ``new`` over ``tracked`` (attribute, label) pairs.

    Fields missing from ``new`` are not part of the update and are skipped.
    Structured values compare by their serialized form.
    """
    changes = []
    for field, label in tracked:
        if field not in new:
            continue
        old_val = old.get(field)
        new_val = new[field]
        if isinstance(old_val, (list, dict)) or isinstance(new_val, (list, dict)):
            differs = serialize_value(old_val) != serialize_value(new_val)
        else:
            differs = old_val != new_val
        if differs:
            changes.append(FieldChange(
                field=field,
                field_name=label,
                old_value=serialize_value(old_val),
                new_value=serialize_value(new_val),
            ))
    return changes


def record_changes(history_model, fk_name: str, fk_value: int,
                   changes: Iterable[FieldChange], changed_by: int | None) -> list:
    """Add one ``history_model`` row per change to the session."""
    rows = []
    for change in changes:
        row = history_model(
            field_name=change.field_name,
            old_value=change.old_value,
            new_value=change.new_value,
            changed_by=changed_by,
            **{fk_name: fk_value},
        )
        db.session.add(row)
        rows.append(row)
    if rows:
        logger.debug(
            "Recorded %d %s row(s) for %s=%s",
            len(rows), history_model.__tablename__, fk_name, fk_value,
        )
    return rows
