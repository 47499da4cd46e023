"""
Tests for the backtracking placer and its output guarantees.
"""
import random
import threading
from collections import defaultdict

import pytest

from availability import AvailabilityStatus
from conflicts import check_conflict
from models import Assignment, ClassSection, CurriculumRequirement, Room, Teacher
from school_calendar import CalendarConfig, TimeRange
from solver import (
    EMPTY, PARTIAL, SOLVED, STOPPED_CANCELLED, STOPPED_STEPS, STOPPED_TIME,
    auto_assign, build_lesson_groups, generate_timetable, place_lesson_groups,
)

U = AvailabilityStatus.UNAVAILABLE
P = AvailabilityStatus.PREFERRED


# --- Helpers ------------------------------------------------------------------

def make_calendar(days: int = 5, lessons: int = 6) -> CalendarConfig:
    return CalendarConfig.uniform(days, [TimeRange(f'{8 + i:02d}:00', f'{8 + i:02d}:40') for i in range(lessons)])


def only_open_at(calendar: CalendarConfig, open_day: int, open_hour: int) -> dict:
    """Availability grid that is unavailable everywhere except one slot."""
    return {
        d: {h: U for h in range(calendar.lesson_count(d)) if (d, h) != (open_day, open_hour)}
        for d in calendar.days()
    }


def make_class(class_id: str, curriculum: list[tuple[str, str, int]], **kwargs) -> ClassSection:
    return ClassSection(
        id=class_id,
        name=class_id.upper(),
        curriculum=[
            CurriculumRequirement(id=f'{class_id}-{i}', class_id=class_id, teacher_id=teacher_id,
                                  lesson_name=lesson, weekly_hours=hours)
            for i, (teacher_id, lesson, hours) in enumerate(curriculum)
        ],
        **kwargs,
    )


def total_units(classes: list[ClassSection]) -> int:
    return sum(item.weekly_hours for c in classes for item in c.curriculum)


def assert_exclusive(assigned: list[Assignment]) -> None:
    teacher_slots = [(a.day, a.hour, a.teacher_id) for a in assigned]
    class_slots = [(a.day, a.hour, a.class_id) for a in assigned]
    room_slots = [(a.day, a.hour, a.room_id) for a in assigned if a.room_id]
    assert len(teacher_slots) == len(set(teacher_slots))
    assert len(class_slots) == len(set(class_slots))
    assert len(room_slots) == len(set(room_slots))


def assert_contiguous(assigned: list[Assignment]) -> None:
    blocks = defaultdict(list)
    for a in assigned:
        blocks[(a.class_id, a.lesson_name, a.teacher_id)].append(a)
    for block in blocks.values():
        assert len({a.day for a in block}) == 1
        hours = sorted(a.hour for a in block)
        assert hours == list(range(hours[0], hours[0] + len(hours)))


def make_school(seed: int = 7):
    """A small but busy school: 4 classes, 5 teachers, 3 rooms, some blocked hours."""
    rng = random.Random(seed)
    calendar = make_calendar(5, 6)
    teachers = [Teacher(id=f't{i}', name=f'Teacher {i}') for i in range(5)]
    for t in teachers:
        for _ in range(4):
            t.availability.setdefault(rng.randrange(5), {})[rng.randrange(6)] = U
        t.availability.setdefault(rng.randrange(5), {})[rng.randrange(6)] = P
    rooms = [Room(id=f'r{i}', name=f'Room {i}') for i in range(3)]
    rooms[2].availability = {0: {0: U, 1: U}}
    lessons = ['Math', 'Physics', 'History', 'Art', 'Music', 'Biology']
    classes = []
    for c in range(4):
        curriculum = [(f't{(c + i) % 5}', lessons[(c + i) % len(lessons)], 1 + (c + i) % 3) for i in range(4)]
        classes.append(make_class(f'c{c}', curriculum))
    classes[0].availability = {d: {5: U} for d in range(5)}
    return calendar, teachers, classes, rooms


# --- Scenarios ----------------------------------------------------------------

def test_single_open_slot_is_used():
    calendar = make_calendar(5, 2)
    teacher = Teacher(id='t1', name='Ada', availability=only_open_at(calendar, 2, 1))
    cls = make_class('c1', [('t1', 'Math', 1)])

    result = auto_assign(calendar, [teacher], [cls], [], seed=1)

    assert result.status == SOLVED
    assert result.unassigned == []
    assert [(a.day, a.hour, a.class_id, a.teacher_id, a.room_id) for a in result.assigned] == [(2, 1, 'c1', 't1', None)]


def test_unavailable_teacher_leaves_requirement_unassigned():
    calendar = make_calendar(5, 2)
    teacher = Teacher(id='t1', name='Ada',
                      availability={d: {h: U for h in range(2)} for d in range(5)})
    cls = make_class('c1', [('t1', 'Math', 1)])

    result = auto_assign(calendar, [teacher], [cls], [], seed=1)

    assert result.status == PARTIAL
    assert result.assigned == []
    assert [(r.class_id, r.teacher_id, r.lesson_name) for r in result.unassigned] == [('c1', 't1', 'Math')]


def test_double_lesson_without_adjacent_hours_is_dead():
    calendar = make_calendar(5, 4)
    # Hours 1 and 3 blocked every day: only 0 and 2 are free, never adjacent
    cls = make_class('c1', [('t1', 'Chemistry', 2)],
                     availability={d: {1: U, 3: U} for d in range(5)})
    teacher = Teacher(id='t1', name='Ada')

    result = auto_assign(calendar, [teacher], [cls], [], seed=3)

    assert result.assigned == []
    assert len(result.unassigned) == 2
    assert len(result.dead_groups) == 1


def test_two_classes_competing_for_one_teacher_hour():
    calendar = make_calendar(5, 3)
    teacher = Teacher(id='t1', name='Ada', availability=only_open_at(calendar, 0, 0))
    classes = [make_class('c1', [('t1', 'Math', 1)]), make_class('c2', [('t1', 'Math', 1)])]

    result = auto_assign(calendar, [teacher], classes, [], seed=11)

    assert len(result.assigned) == 1
    assert len(result.unassigned) == 1
    placed = result.assigned[0]
    loser = result.unassigned[0]
    assert placed.class_id != loser.class_id

    manual = Assignment(id='m1', lesson_name='Math', teacher_id='t1', class_id=loser.class_id, day=0, hour=0)
    message = check_conflict(manual, result.assigned, names={'c1': '7-A', 'c2': '7-B', 't1': 'Ada'})
    assert message is not None
    assert {'c1': '7-A', 'c2': '7-B'}[placed.class_id] in message


@pytest.mark.parametrize('seed', range(30))
def test_greedy_choice_is_undone_when_it_blocks_a_later_class(seed):
    # c3 grabbing the preferred hour 1 leaves c1 and c2 fighting over hour 0
    calendar = make_calendar(1, 3)
    teacher = Teacher(id='t1', name='Ada', availability={0: {1: P}})
    classes = [
        make_class('c1', [('t1', 'Math', 1)], availability={0: {2: U}}),
        make_class('c2', [('t1', 'Math', 1)], availability={0: {2: U}}),
        make_class('c3', [('t1', 'Math', 1)], availability={0: {0: U}}),
    ]

    result = auto_assign(calendar, [teacher], classes, [], seed=seed)

    assert result.status == SOLVED
    assert {a.class_id: a.hour for a in result.assigned}['c3'] == 2
    assert_exclusive(result.assigned)


def test_nothing_to_assign():
    calendar = make_calendar()
    result = auto_assign(calendar, [Teacher(id='t1', name='Ada')], [make_class('c1', [])], [])
    assert result.status == EMPTY
    assert result.assigned == [] and result.unassigned == []


def test_missing_teacher_does_not_abort_run():
    calendar = make_calendar(5, 4)
    classes = [make_class('c1', [('ghost', 'Math', 2), ('t1', 'Art', 1)])]

    result = auto_assign(calendar, [Teacher(id='t1', name='Ada')], classes, [], seed=2)

    assert [(a.lesson_name, a.teacher_id) for a in result.assigned] == [('Art', 't1')]
    assert len(result.unassigned) == 2
    assert all(r.teacher_id == 'ghost' for r in result.unassigned)


# --- Invariants ---------------------------------------------------------------

@pytest.mark.parametrize('seed', [0, 1, 2, 3])
def test_invariants_hold_on_busy_school(seed):
    calendar, teachers, classes, rooms = make_school()

    result = auto_assign(calendar, teachers, classes, rooms, seed=seed)

    assert len(result.assigned) + len(result.unassigned) == total_units(classes)
    assert_exclusive(result.assigned)
    assert_contiguous(result.assigned)

    entities = {t.id: t for t in teachers}
    entities.update({c.id: c for c in classes})
    entities.update({r.id: r for r in rooms})
    for a in result.assigned:
        for entity_id in (a.teacher_id, a.class_id, a.room_id):
            status = entities[entity_id].availability.get(a.day, {}).get(a.hour)
            assert status != U
        assert a.hour < 5 or a.class_id != 'c0'


def test_rerun_with_clear_existing_is_still_valid():
    calendar, teachers, classes, rooms = make_school()
    first = auto_assign(calendar, teachers, classes, rooms, seed=5)

    second = auto_assign(calendar, teachers, classes, rooms, existing=first.assigned, clear_existing=True, seed=6)

    assert len(second.assigned) + len(second.unassigned) == total_units(classes)
    assert_exclusive(second.assigned)
    assert_contiguous(second.assigned)


def test_same_seed_gives_same_placement():
    calendar, teachers, classes, rooms = make_school()

    first = auto_assign(calendar, teachers, classes, rooms, seed=42)
    second = auto_assign(calendar, teachers, classes, rooms, seed=42)

    def positions(result):
        return [(a.class_id, a.lesson_name, a.day, a.hour, a.room_id) for a in result.assigned]

    assert positions(first) == positions(second)


def test_kept_assignments_block_their_slots():
    calendar = make_calendar(5, 2)
    teacher = Teacher(id='t1', name='Ada', availability=only_open_at(calendar, 1, 0))
    cls = make_class('c1', [('t1', 'Math', 1)])
    kept = Assignment(id='k1', lesson_name='Art', teacher_id='t1', class_id='c9', day=1, hour=0)

    result = auto_assign(calendar, [teacher], [cls], [], existing=[kept], clear_existing=False, seed=0)

    assert result.assigned == []
    assert len(result.unassigned) == 1


def test_rooms_are_assigned_and_not_double_booked():
    calendar = make_calendar(1, 1)
    rooms = [Room(id='r1', name='Lab')]
    classes = [make_class('c1', [('t1', 'Math', 1)]), make_class('c2', [('t2', 'Math', 1)])]
    teachers = [Teacher(id='t1', name='Ada'), Teacher(id='t2', name='Bob')]

    result = auto_assign(calendar, teachers, classes, rooms, seed=4)

    assert len(result.assigned) == 1
    assert result.assigned[0].room_id == 'r1'
    assert len(result.unassigned) == 1


def test_block_lesson_placed_on_consecutive_hours():
    calendar = make_calendar(2, 5)
    cls = make_class('c1', [('t1', 'Lab Work', 3)])
    teacher = Teacher(id='t1', name='Ada', availability={0: {h: U for h in range(5)}, 1: {0: U}})

    result = auto_assign(calendar, [teacher], [cls], [], seed=9)

    assert result.status == SOLVED
    assert {a.day for a in result.assigned} == {1}
    assert_contiguous(result.assigned)


# --- Budgets and cancellation -------------------------------------------------

def test_step_budget_still_accounts_for_everything():
    calendar, teachers, classes, rooms = make_school()
    groups = build_lesson_groups(calendar, teachers, classes, rooms, set())

    result = place_lesson_groups(groups, set(), seed=1, max_steps=0)

    assert result.stopped_reason == STOPPED_STEPS
    assert len(result.assigned) + len(result.unassigned) == total_units(classes)
    assert_exclusive(result.assigned)


def test_cancelled_search_returns_best_effort():
    calendar, teachers, classes, rooms = make_school()
    cancel = threading.Event()
    cancel.set()

    result = auto_assign(calendar, teachers, classes, rooms, seed=1, cancel_event=cancel)

    assert result.stopped_reason == STOPPED_CANCELLED
    assert len(result.assigned) + len(result.unassigned) == total_units(classes)


def one_teacher_too_many_classes():
    """Twelve one-hour classes for one teacher in an eleven-hour week: the search can never finish."""
    calendar = make_calendar(1, 11)
    teacher = Teacher(id='t1', name='Ada')
    classes = [make_class(f'c{i}', [('t1', 'Math', 1)]) for i in range(12)]
    return calendar, [teacher], classes


def test_time_budget_stops_search():
    calendar, teachers, classes = one_teacher_too_many_classes()

    result = auto_assign(calendar, teachers, classes, [], seed=1, max_steps=None, max_time_seconds=0.2)

    assert result.stopped_reason == STOPPED_TIME
    assert result.status == PARTIAL
    assert len(result.assigned) == 11
    assert len(result.unassigned) == 1
    assert_exclusive(result.assigned)


def test_cancel_from_another_thread_stops_running_search():
    calendar, teachers, classes = one_teacher_too_many_classes()
    cancel = threading.Event()
    timer = threading.Timer(0.1, cancel.set)
    timer.start()
    try:
        result = auto_assign(calendar, teachers, classes, [], seed=1, max_steps=None,
                             max_time_seconds=10, cancel_event=cancel)
    finally:
        timer.cancel()

    assert result.stopped_reason == STOPPED_CANCELLED
    assert len(result.assigned) == 11
    assert len(result.unassigned) == 1


def test_more_attempts_never_do_worse():
    calendar, teachers, classes, rooms = make_school()

    single = auto_assign(calendar, teachers, classes, rooms, seed=3, num_attempts=1)
    several = auto_assign(calendar, teachers, classes, rooms, seed=3, num_attempts=4)

    assert len(several.unassigned) <= len(single.unassigned)


# --- Dict entry point ---------------------------------------------------------

def test_generate_timetable_from_editor_data():
    data = {
        'calendar': {'daysInWeek': 2, 'lessonTimes': [{'start': '08:00', 'end': '08:40'},
                                                       {'start': '08:50', 'end': '09:30'}]},
        'teachers': [{'id': 't1', 'name': 'Ada', 'lessons': ['Math'],
                      'availability': {'0': {'0': 'unavailable', '1': 'unavailable'}}}],
        'classes': [{'id': 'c1', 'name': '9-A',
                     'curriculum': [{'lessonName': 'Math', 'teacherId': 't1', 'weeklyHours': 2}]}],
        'rooms': [],
        'assignments': [],
    }

    result = generate_timetable(data, seed=0)

    assert result['status'] == SOLVED
    assert sorted((a['day'], a['hour']) for a in result['assigned']) == [(1, 0), (1, 1)]
    assert result['unassigned'] == []
    assert result['diagnostics']['totalRequirements'] == 2


def test_generate_timetable_reports_empty_curriculum():
    result = generate_timetable({'calendar': {'daysInWeek': 5}, 'teachers': [], 'classes': []})
    assert result['status'] == EMPTY
    assert 'Nothing to assign' in result['message']
