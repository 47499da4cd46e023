"""
Timetable Assignment Solver - Backtracking Implementation

Places every weekly lesson-hour of the curriculum onto a (day, hour, room)
slot. Lesson groups are ordered most-constrained-first and searched depth
first over their scored candidates. When no full placement exists the best
partial placement is returned together with the exact list of unplaced hours.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

from candidates import BlockCandidate, generate_candidates
from curriculum import AtomicRequirement, LessonGroup, expand_requirements, group_requirements
from models import (
    Assignment, ClassSection, Room, Teacher,
    assignment_from_dict, class_from_dict, class_key, generate_id, room_from_dict, room_key,
    teacher_from_dict, teacher_key,
)
from school_calendar import CalendarConfig, calendar_from_dict

logger = logging.getLogger(__name__)

# Solve states
PENDING = 'pending'
SOLVING = 'solving'
SOLVED = 'solved'
PARTIAL = 'partial'
EMPTY = 'empty'

DEFAULT_MAX_STEPS = 200_000

# Reasons a search stopped before exhausting its candidates
STOPPED_STEPS = 'steps'
STOPPED_TIME = 'time'
STOPPED_CANCELLED = 'cancelled'


@dataclass
class PlacementResult:
    status: str
    assigned: list[Assignment] = field(default_factory=list)
    unassigned: list[AtomicRequirement] = field(default_factory=list)
    steps: int = 0
    stopped_reason: Optional[str] = None
    dead_groups: list[LessonGroup] = field(default_factory=list)
    seed: Optional[int] = None

    @property
    def total_requirements(self) -> int:
        return len(self.assigned) + len(self.unassigned)


@dataclass
class SearchFrame:
    """Everything one depth-first search mutates.

    `occupied` and `assignments` grow when a candidate is claimed and shrink
    again on backtrack; nothing outside the frame touches them.
    """
    groups: list[LessonGroup]
    occupied: set[str]
    max_steps: Optional[int] = None
    deadline: Optional[float] = None
    cancel_event: Optional[threading.Event] = None
    assignments: list[Assignment] = field(default_factory=list)
    state: str = PENDING
    steps: int = 0
    best_depth: int = -1
    best_assignments: list[Assignment] = field(default_factory=list)
    stopped_reason: Optional[str] = None

    def claim(self, group: LessonGroup, candidate: BlockCandidate) -> Optional[list[str]]:
        """Take every occupancy key of a candidate, or nothing if any is taken."""
        keys = []
        for slot in candidate.slots:
            keys.append(teacher_key(group.teacher_id, slot.day, slot.hour))
            keys.append(class_key(group.class_id, slot.day, slot.hour))
            if slot.room_id:
                keys.append(room_key(slot.room_id, slot.day, slot.hour))
        if any(k in self.occupied for k in keys):
            return None

        self.occupied.update(keys)
        for slot in candidate.slots:
            self.assignments.append(Assignment(
                id=generate_id(),
                lesson_name=group.lesson_name,
                teacher_id=group.teacher_id,
                class_id=group.class_id,
                day=slot.day,
                hour=slot.hour,
                room_id=slot.room_id,
            ))
        return keys

    def release(self, keys: list[str], count: int) -> None:
        self.occupied.difference_update(keys)
        del self.assignments[len(self.assignments) - count:]

    def record_partial(self, depth: int) -> None:
        if (depth > self.best_depth
                or (depth == self.best_depth and len(self.assignments) > len(self.best_assignments))):
            self.best_depth = depth
            self.best_assignments = list(self.assignments)

    def should_stop(self) -> bool:
        if self.cancel_event is not None and self.cancel_event.is_set():
            self.stopped_reason = STOPPED_CANCELLED
        elif self.max_steps is not None and self.steps >= self.max_steps:
            self.stopped_reason = STOPPED_STEPS
        elif self.deadline is not None and time.monotonic() >= self.deadline:
            self.stopped_reason = STOPPED_TIME
        return self.stopped_reason is not None

    def run(self) -> bool:
        """Depth-first search over the ordered groups.

        Iterative rather than recursive so large curricula do not hit the
        interpreter's recursion limit. Each stack entry is the candidate
        iterator of a placed group plus the keys it claimed.
        """
        self.state = SOLVING
        stack: list[tuple[LessonGroup, object, list[str]]] = []
        depth = 0
        iterator = None

        while True:
            if depth == len(self.groups):
                self.state = SOLVED
                return True

            # Cancellation and budgets are checked between group expansions
            if self.should_stop():
                self.record_partial(depth)
                self.state = PARTIAL
                return False

            group = self.groups[depth]
            if iterator is None:
                iterator = iter(group.candidates)

            claimed = None
            for candidate in iterator:
                self.steps += 1
                claimed = self.claim(group, candidate)
                if claimed is not None:
                    break

            if claimed is not None:
                stack.append((group, iterator, claimed))
                depth += 1
                iterator = None
                continue

            # Every candidate of this group failed: back up one level
            self.record_partial(depth)
            if not stack:
                self.state = PARTIAL
                return False
            previous, iterator, keys = stack.pop()
            self.release(keys, previous.block_size)
            depth -= 1


def order_groups(groups: list[LessonGroup], rng: random.Random) -> list[LessonGroup]:
    """Most constrained first: fewest candidates, then largest block, then random."""
    for group in groups:
        group.priority = rng.random()
    return sorted(groups, key=lambda g: (len(g.candidates), -g.block_size, g.priority))


def shuffle_candidates(candidates: list[BlockCandidate], rng: random.Random) -> list[BlockCandidate]:
    """Best score first, random order among equal scores."""
    shuffled = list(candidates)
    rng.shuffle(shuffled)
    shuffled.sort(key=lambda c: -c.total_score)
    return shuffled


def fill_remaining(groups: list[LessonGroup], occupied: set[str],
                   frame_assignments: list[Assignment]) -> tuple[list[Assignment], list[LessonGroup]]:
    """Greedily place groups the search gave up on, around an existing partial placement.

    Returns the placed assignments (including the given ones) and the groups
    that still did not fit.
    """
    frame = SearchFrame(groups=groups, occupied=set(occupied), assignments=list(frame_assignments))
    for a in frame_assignments:
        frame.occupied.update(a.occupancy_keys())

    left_over = []
    for group in groups:
        for candidate in group.candidates:
            if frame.claim(group, candidate) is not None:
                break
        else:
            left_over.append(group)
    return frame.assignments, left_over


def build_lesson_groups(calendar: CalendarConfig, teachers: list[Teacher], classes: list[ClassSection],
                        rooms: list[Room], occupied: set[str]) -> list[LessonGroup]:
    """Expand the curriculum into lesson groups with their candidates attached."""
    groups = group_requirements(expand_requirements(classes))
    teachers_by_id = {t.id: t for t in teachers}
    classes_by_id = {c.id: c for c in classes}
    for group in groups:
        group.candidates = generate_candidates(group, teachers_by_id, classes_by_id, rooms, calendar, occupied)
    return groups


def place_lesson_groups(groups: list[LessonGroup], occupied: set[str], seed: Optional[int] = None,
                        max_steps: Optional[int] = DEFAULT_MAX_STEPS, deadline: Optional[float] = None,
                        cancel_event: Optional[threading.Event] = None) -> PlacementResult:
    """Run one seeded search over prepared groups.

    Groups without any candidate are set aside first; they can never be
    placed and would otherwise cut every branch short.
    """
    rng = random.Random(seed)

    live = []
    dead = []
    for group in groups:
        (live if group.candidates else dead).append(group)

    ordered = [
        LessonGroup(
            class_id=g.class_id,
            teacher_id=g.teacher_id,
            lesson_name=g.lesson_name,
            requirements=g.requirements,
            candidates=shuffle_candidates(g.candidates, rng),
        )
        for g in order_groups(live, rng)
    ]

    frame = SearchFrame(
        groups=ordered,
        occupied=set(occupied),
        max_steps=max_steps,
        deadline=deadline,
        cancel_event=cancel_event,
    )
    solved = frame.run()

    if solved:
        assigned = list(frame.assignments)
        unplaced_groups = []
    else:
        depth = max(frame.best_depth, 0)
        assigned, unplaced_groups = fill_remaining(ordered[depth:], occupied, frame.best_assignments)

    unassigned = [req for g in unplaced_groups + dead for req in g.requirements]
    status = SOLVED if not unassigned else PARTIAL

    logger.debug(f"Seed {seed}: {status}, {len(assigned)} assigned, {len(unassigned)} unassigned, "
                 f"{frame.steps} steps" + (f", stopped on {frame.stopped_reason}" if frame.stopped_reason else ""))

    return PlacementResult(
        status=status,
        assigned=assigned,
        unassigned=unassigned,
        steps=frame.steps,
        stopped_reason=frame.stopped_reason,
        dead_groups=dead,
        seed=seed,
    )


def auto_assign(
    calendar: CalendarConfig,
    teachers: list[Teacher],
    classes: list[ClassSection],
    rooms: list[Room],
    existing: Optional[list[Assignment]] = None,
    clear_existing: bool = True,
    seed: Optional[int] = None,
    num_attempts: int = 1,
    max_steps: Optional[int] = DEFAULT_MAX_STEPS,
    max_time_seconds: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
) -> PlacementResult:
    """
    Propose placements for every curriculum hour.

    Existing assignments are kept as fixed occupancy unless `clear_existing`
    is set. Several seeded attempts may be run; the one leaving the fewest
    hours unplaced wins, and a full solution ends the loop early. The result
    is a proposal only; see `editing.apply_result` for committing it.
    """
    if not expand_requirements(classes):
        return PlacementResult(status=EMPTY)

    occupied: set[str] = set()
    if not clear_existing:
        for a in existing or []:
            occupied.update(a.occupancy_keys())

    groups = build_lesson_groups(calendar, teachers, classes, rooms, occupied)

    start_time = time.monotonic()
    deadline = start_time + max_time_seconds if max_time_seconds is not None else None
    base_seed = seed if seed is not None else random.randrange(2 ** 31)

    best: Optional[PlacementResult] = None
    for attempt in range(max(num_attempts, 1)):
        if best is not None and deadline is not None and time.monotonic() >= deadline:
            break
        if cancel_event is not None and cancel_event.is_set() and best is not None:
            break

        result = place_lesson_groups(
            groups, occupied,
            seed=base_seed + attempt,
            max_steps=max_steps,
            deadline=deadline,
            cancel_event=cancel_event,
        )
        if best is None or len(result.unassigned) < len(best.unassigned):
            best = result
        if best.status == SOLVED:
            break

    return best


def generate_timetable(
    data: dict,
    clear_existing: bool = True,
    seed: Optional[int] = None,
    num_attempts: int = 1,
    max_steps: Optional[int] = DEFAULT_MAX_STEPS,
    max_time_seconds: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
) -> dict:
    """
    Main entry point for automatic assignment on plain editor data.

    Args:
        data: Dict with calendar, teachers, classes, rooms and assignments
            in the editor's camelCase shape
        clear_existing: Ignore current assignments instead of working around them
        seed: Random seed for reproducible runs (random when None)
        num_attempts: Number of seeded searches to try
        max_steps: Candidate tries allowed per attempt
        max_time_seconds: Wall clock budget across all attempts
        cancel_event: Set it from another thread to stop the search early

    Returns:
        Dict with status, assigned, unassigned, message and run statistics
    """
    start_time = time.time()

    calendar = calendar_from_dict(data.get('calendar') or {})
    teachers = [teacher_from_dict(t) for t in data.get('teachers') or []]
    classes = [class_from_dict(c) for c in data.get('classes') or []]
    rooms = [room_from_dict(r) for r in data.get('rooms') or []]
    existing = [assignment_from_dict(a) for a in data.get('assignments') or []]

    result = auto_assign(
        calendar, teachers, classes, rooms,
        existing=existing,
        clear_existing=clear_existing,
        seed=seed,
        num_attempts=num_attempts,
        max_steps=max_steps,
        max_time_seconds=max_time_seconds,
        cancel_event=cancel_event,
    )
    elapsed = time.time() - start_time

    if result.status == EMPTY:
        return {
            'status': EMPTY,
            'assigned': [],
            'unassigned': [],
            'message': 'Nothing to assign. Add lessons to the class curricula first.',
            'steps': 0,
            'seed': None,
            'elapsedSeconds': elapsed,
            'diagnostics': {'totalRequirements': 0},
        }

    diagnostics = {
        'totalRequirements': result.total_requirements,
        'deadGroups': [
            {'classId': g.class_id, 'teacherId': g.teacher_id, 'lessonName': g.lesson_name, 'hours': g.block_size}
            for g in result.dead_groups
        ],
    }
    if result.stopped_reason:
        diagnostics['stoppedReason'] = result.stopped_reason

    if result.status == SOLVED:
        message = f'All {len(result.assigned)} lesson hours placed in {elapsed:.1f}s'
    else:
        message = (f'Placed {len(result.assigned)} of {result.total_requirements} lesson hours; '
                   f'{len(result.unassigned)} could not be placed. Try relaxing availability constraints.')

    return {
        'status': result.status,
        'assigned': [a.to_dict() for a in result.assigned],
        'unassigned': [r.to_dict() for r in result.unassigned],
        'message': message,
        'steps': result.steps,
        'seed': result.seed,
        'elapsedSeconds': elapsed,
        'diagnostics': diagnostics,
    }
