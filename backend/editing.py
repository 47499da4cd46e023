"""
Manual timetable edits: add, drag-move (with swap), delete, and applying a
solver proposal.

Edits never mutate the list they are given; they return the new list.
A teacher, class or room collision always blocks an edit. A broken
consecutive-lessons rule only asks for confirmation, which the caller gives
by repeating the call with override=True.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Optional

from conflicts import check_conflict, check_consecutive_lessons_rule, get_conflict_details, weekly_hours_for
from models import Assignment, ClassSection, generate_id
from school_calendar import CalendarConfig

logger = logging.getLogger(__name__)

APPLIED = 'applied'
SWAPPED = 'swapped'
UNCHANGED = 'unchanged'
BLOCKED = 'blocked'
NEEDS_CONFIRMATION = 'needs_confirmation'


class AssignmentNotFoundError(KeyError):
    """Raised when an edit refers to an assignment id that does not exist."""


@dataclass
class EditOutcome:
    status: str
    assignments: list[Assignment] = field(default_factory=list)
    conflict: Optional[str] = None
    conflict_details: Optional[str] = None
    warning: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'status': self.status,
            'assignments': [a.to_dict() for a in self.assignments],
            'conflict': self.conflict,
            'conflictDetails': self.conflict_details,
            'warning': self.warning,
        }


def add_assignment(candidate: Assignment, assignments: list[Assignment], classes: list[ClassSection],
                   override: bool = False, names: Optional[dict[str, str]] = None,
                   calendar: Optional[CalendarConfig] = None) -> EditOutcome:
    """Place one lesson by hand."""
    conflict = check_conflict(candidate, assignments, names)
    rule = check_consecutive_lessons_rule(
        candidate, assignments,
        weekly_hours_for(classes, candidate.class_id, candidate.lesson_name),
        calendar,
    )

    if conflict:
        logger.info(f"Manual add blocked: {conflict}")
        return EditOutcome(
            status=BLOCKED,
            assignments=list(assignments),
            conflict=conflict,
            conflict_details=get_conflict_details(candidate, assignments, names),
            warning=rule.warning,
        )

    if not rule.is_valid and not override:
        return EditOutcome(status=NEEDS_CONFIRMATION, assignments=list(assignments), warning=rule.warning)

    new = replace(candidate, id=candidate.id or generate_id())
    return EditOutcome(status=APPLIED, assignments=list(assignments) + [new], warning=rule.warning)


def move_assignment(assignment_id: str, target_class_id: str, target_day: int, target_hour: int,
                    assignments: list[Assignment], classes: list[ClassSection],
                    override: bool = False, names: Optional[dict[str, str]] = None,
                    calendar: Optional[CalendarConfig] = None) -> EditOutcome:
    """Drag an assignment to another cell of the class grid.

    If the target cell already holds a lesson the two trade places, which
    always needs confirmation since it moves a lesson the user did not drag.
    """
    dragged = next((a for a in assignments if a.id == assignment_id), None)
    if dragged is None:
        raise AssignmentNotFoundError(assignment_id)

    if (dragged.class_id, dragged.day, dragged.hour) == (target_class_id, target_day, target_hour):
        return EditOutcome(status=UNCHANGED, assignments=list(assignments))

    target = next((a for a in assignments
                   if a.id != dragged.id and a.class_id == target_class_id
                   and a.day == target_day and a.hour == target_hour), None)

    moved = replace(dragged, class_id=target_class_id, day=target_day, hour=target_hour)
    others = [a for a in assignments if a.id != dragged.id and (target is None or a.id != target.id)]

    conflict = check_conflict(moved, others, names)
    if conflict:
        logger.info(f"Move of {assignment_id} blocked: {conflict}")
        return EditOutcome(
            status=BLOCKED,
            assignments=list(assignments),
            conflict=conflict,
            conflict_details=get_conflict_details(moved, others, names),
        )

    swapped = None
    if target is not None:
        swapped = replace(target, class_id=dragged.class_id, day=dragged.day, hour=dragged.hour)
        swap_conflict = check_conflict(swapped, others + [moved], names)
        if swap_conflict:
            logger.info(f"Swap of {assignment_id} with {target.id} blocked: {swap_conflict}")
            return EditOutcome(
                status=BLOCKED,
                assignments=list(assignments),
                conflict=swap_conflict,
                conflict_details=get_conflict_details(swapped, others + [moved], names),
            )

    rule = check_consecutive_lessons_rule(
        moved, others,
        weekly_hours_for(classes, moved.class_id, moved.lesson_name),
        calendar,
    )
    if (not rule.is_valid or swapped is not None) and not override:
        return EditOutcome(status=NEEDS_CONFIRMATION, assignments=list(assignments), warning=rule.warning)

    updated = []
    for a in assignments:
        if a.id == dragged.id:
            updated.append(moved)
        elif swapped is not None and a.id == swapped.id:
            updated.append(swapped)
        else:
            updated.append(a)
    return EditOutcome(status=SWAPPED if swapped else APPLIED, assignments=updated, warning=rule.warning)


def delete_assignment(assignments: list[Assignment], class_id: str, day: int, hour: int) -> list[Assignment]:
    """Remove whatever the class has at (day, hour)."""
    return [a for a in assignments if not (a.class_id == class_id and a.day == day and a.hour == hour)]


def apply_result(existing: list[Assignment], assigned: list[Assignment], clear_existing: bool) -> list[Assignment]:
    """Commit a solver proposal: replace everything, or append to what is there."""
    if clear_existing:
        return list(assigned)
    return list(existing) + list(assigned)
