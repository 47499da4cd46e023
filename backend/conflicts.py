"""
Conflict checks for single assignments.

`check_conflict` is the hard gate used by manual and drag edits: a teacher,
class or room can never be in two places at once. The consecutive-lessons
rule is only advice about how multi-hour lessons should be laid out.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Optional

from models import Assignment, ClassSection
from school_calendar import CalendarConfig, DAYS_OF_WEEK


@dataclass
class RuleCheck:
    is_valid: bool
    warning: Optional[str] = None

    def to_dict(self) -> dict:
        return {'isValid': self.is_valid, 'warning': self.warning}


def _name(names: Optional[dict[str, str]], entity_id: Optional[str]) -> str:
    if not entity_id:
        return 'unknown'
    if names:
        return names.get(entity_id, entity_id)
    return entity_id


def _same_time(a: Assignment, day: int, hour: int) -> bool:
    return a.day == day and a.hour == hour


def check_conflict(candidate: Assignment, existing: list[Assignment],
                   names: Optional[dict[str, str]] = None) -> Optional[str]:
    """Return why `candidate` collides with `existing`, or None if it fits.

    `names` maps teacher/class/room ids to display names for the message.
    """
    day, hour = candidate.day, candidate.hour
    for a in existing:
        if _same_time(a, day, hour) and a.teacher_id == candidate.teacher_id:
            return (f'Teacher {_name(names, candidate.teacher_id)} is already teaching '
                    f'"{a.lesson_name}" to class {_name(names, a.class_id)} at this time.')
    for a in existing:
        if _same_time(a, day, hour) and a.class_id == candidate.class_id:
            return (f'Class {_name(names, a.class_id)} already has "{a.lesson_name}" '
                    f'with {_name(names, a.teacher_id)} at this time.')
    if candidate.room_id:
        for a in existing:
            if _same_time(a, day, hour) and a.room_id == candidate.room_id:
                return (f'Room {_name(names, candidate.room_id)} is already used for '
                        f'"{a.lesson_name}" by class {_name(names, a.class_id)} at this time.')
    return None


def get_conflict_details(candidate: Assignment, existing: list[Assignment],
                         names: Optional[dict[str, str]] = None) -> str:
    """Every collision of `candidate`, one paragraph each. Empty when there are none."""
    day, hour = candidate.day, candidate.hour
    details = []

    teacher_clash = next((a for a in existing
                          if _same_time(a, day, hour) and a.teacher_id == candidate.teacher_id), None)
    if teacher_clash:
        details.append(
            f'TEACHER CONFLICT:\n'
            f'   - {_name(names, candidate.teacher_id)}\n'
            f'   - is teaching "{teacher_clash.lesson_name}" at the same time\n'
            f'   - in class {_name(names, teacher_clash.class_id)}'
        )

    class_clash = next((a for a in existing
                        if _same_time(a, day, hour) and a.class_id == candidate.class_id), None)
    if class_clash:
        details.append(
            f'CLASS CONFLICT:\n'
            f'   - class {_name(names, candidate.class_id)}\n'
            f'   - already has "{class_clash.lesson_name}" at the same time\n'
            f'   - teacher: {_name(names, class_clash.teacher_id)}'
        )

    if candidate.room_id:
        room_clash = next((a for a in existing
                           if _same_time(a, day, hour) and a.room_id == candidate.room_id), None)
        if room_clash:
            details.append(
                f'ROOM CONFLICT:\n'
                f'   - room {_name(names, candidate.room_id)}\n'
                f'   - is used for "{room_clash.lesson_name}" at the same time\n'
                f'   - class: {_name(names, room_clash.class_id)}'
            )

    return '\n\n'.join(details)


def weekly_hours_for(classes: list[ClassSection], class_id: str, lesson_name: str) -> Optional[int]:
    """Weekly hours of a lesson in a class's curriculum, None when it is not there."""
    for cls in classes:
        if cls.id != class_id:
            continue
        for item in cls.curriculum:
            if item.lesson_name == lesson_name:
                return item.weekly_hours
    return None


def _describe(day: int, hour: int, calendar: Optional[CalendarConfig]) -> str:
    if calendar is not None:
        return calendar.slot_label(day, hour)
    day_name = DAYS_OF_WEEK[day] if 0 <= day < len(DAYS_OF_WEEK) else f'Day {day + 1}'
    return f'{day_name} lesson {hour + 1}'


def check_consecutive_lessons_rule(candidate: Assignment, assignments: list[Assignment],
                                   weekly_hours: Optional[int],
                                   calendar: Optional[CalendarConfig] = None) -> RuleCheck:
    """Advise whether a lesson's sessions are laid out in double periods.

    - fewer than 2 weekly hours: nothing to check
    - even weekly hours: some day must hold exactly two sessions at adjacent hours
    - odd weekly hours: the two earliest sessions of the week must be adjacent on one day

    While fewer than two sessions are placed there is nothing to judge yet.
    """
    if not weekly_hours or weekly_hours < 2:
        return RuleCheck(True)

    placed = [
        a for a in assignments
        if a.class_id == candidate.class_id
        and a.lesson_name == candidate.lesson_name
        and not _same_time(a, candidate.day, candidate.hour)
    ]
    sessions = sorted(placed + [candidate], key=lambda a: a.day * 24 + a.hour)
    if len(sessions) < 2:
        return RuleCheck(True)

    if weekly_hours % 2 == 0:
        by_day: dict[int, list[int]] = defaultdict(list)
        for s in sessions:
            by_day[s.day].append(s.hour)
        for hours in by_day.values():
            if len(hours) == 2 and abs(hours[0] - hours[1]) == 1:
                return RuleCheck(True)
        rule = (f'DOUBLE PERIOD RULE: "{candidate.lesson_name}" has {weekly_hours} hours (even), '
                f'so it should be taught in blocks of two.')
        hint = 'Place the sessions in pairs of adjacent hours.'
    else:
        first, second = sessions[0], sessions[1]
        if first.day == second.day and second.hour - first.hour == 1:
            return RuleCheck(True)
        rule = (f'LESSON RULE: "{candidate.lesson_name}" has {weekly_hours} hours, '
                f'so its first two sessions should be back to back.')
        hint = 'Place the first two sessions in adjacent hours.'

    current = ', '.join(_describe(a.day, a.hour, calendar) for a in sorted(placed, key=lambda a: a.day * 24 + a.hour))
    return RuleCheck(
        False,
        f'{rule}\n\nCurrent "{candidate.lesson_name}" sessions: {current or "none"}\n\nHint: {hint}',
    )


def find_conflicts(assignments: list[Assignment]) -> list[dict]:
    """All hard collisions inside a list of assignments, one entry per clashing pair."""
    conflicts = []
    seen: dict[str, Assignment] = {}
    for a in assignments:
        for key in a.occupancy_keys():
            other = seen.get(key)
            if other is not None:
                conflicts.append({
                    'kind': {'t': 'teacher', 'c': 'class', 'r': 'room'}[key[0]],
                    'day': a.day,
                    'hour': a.hour,
                    'first': other.id,
                    'second': a.id,
                })
            else:
                seen[key] = a
    return conflicts
