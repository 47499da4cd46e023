"""
Candidate generation for lesson groups.

For each group we enumerate every (day, hour, room) slot the teacher, class
and room could all take, score it by availability, and turn those slots into
block candidates: single slots for one-hour lessons, runs of consecutive
hours on one day for multi-hour lessons.
"""

import itertools
import logging
from dataclasses import dataclass
from typing import Optional

from availability import AvailabilityStatus, get_status, has_unavailable_marker, status_score
from curriculum import LessonGroup
from models import ClassSection, Room, Teacher, class_key, room_key, teacher_key
from school_calendar import CalendarConfig

logger = logging.getLogger(__name__)

# Room options kept per hour when building multi-hour blocks
TOP_OPTIONS_PER_OFFSET = 3


@dataclass(frozen=True)
class Slot:
    day: int
    hour: int
    room_id: Optional[str]
    score: float

    @property
    def position(self) -> tuple[int, int, Optional[str]]:
        return (self.day, self.hour, self.room_id)


@dataclass(frozen=True)
class BlockCandidate:
    slots: tuple[Slot, ...]
    total_score: float


def active_hour_window(cls: ClassSection, calendar: CalendarConfig) -> Optional[tuple[int, int]]:
    """Hours of the day the class can be taught in, as an inclusive [start, end].

    If the class grid marks anything UNAVAILABLE, the window spans the first
    to the last hour that is not UNAVAILABLE on any day. Otherwise the
    explicit active range applies, or the whole longest day. None means the
    class has no usable hour at all.
    """
    if has_unavailable_marker(cls.availability):
        open_hours = [
            hour
            for day in calendar.days()
            for hour in range(calendar.lesson_count(day))
            if get_status(cls.availability, day, hour) != AvailabilityStatus.UNAVAILABLE
        ]
        if not open_hours:
            return None
        return (min(open_hours), max(open_hours))

    if cls.active_hour_range is not None:
        start, end = cls.active_hour_range
        if start > end:
            return None
        return (start, end)

    if calendar.max_lessons == 0:
        return None
    return (0, calendar.max_lessons - 1)


def generate_slots(group: LessonGroup, teacher: Teacher, cls: ClassSection, rooms: list[Room],
                   calendar: CalendarConfig, occupied: set[str]) -> list[Slot]:
    """All scored single-hour slots for a group, before block construction."""
    window = active_hour_window(cls, calendar)
    if window is None:
        return []

    slots = []
    for day in calendar.days():
        start = max(window[0], 0)
        end = min(window[1], calendar.lesson_count(day) - 1)
        if start > end:
            continue
        if all(get_status(cls.availability, day, h) == AvailabilityStatus.UNAVAILABLE
               for h in range(start, end + 1)):
            continue

        for hour in range(start, end + 1):
            teacher_status = get_status(teacher.availability, day, hour)
            class_status = get_status(cls.availability, day, hour)
            if AvailabilityStatus.UNAVAILABLE in (teacher_status, class_status):
                continue
            if (teacher_key(teacher.id, day, hour) in occupied
                    or class_key(cls.id, day, hour) in occupied):
                continue

            base_score = status_score(teacher_status) + status_score(class_status)

            if not rooms:
                slots.append(Slot(day, hour, None, base_score))
                continue

            for room in rooms:
                room_status = get_status(room.availability, day, hour)
                if room_status == AvailabilityStatus.UNAVAILABLE:
                    continue
                if room_key(room.id, day, hour) in occupied:
                    continue
                slots.append(Slot(day, hour, room.id, base_score + status_score(room_status)))
    return slots


def _best_by_position(slots: list[Slot]) -> dict[tuple[int, int, Optional[str]], Slot]:
    best: dict[tuple[int, int, Optional[str]], Slot] = {}
    for slot in slots:
        current = best.get(slot.position)
        if current is None or slot.score > current.score:
            best[slot.position] = slot
    return best


def build_block_candidates(slots: list[Slot], block_size: int) -> list[BlockCandidate]:
    """Turn scored slots into placements of `block_size` consecutive hours.

    Each hour of a block may use a different room; only the three best room
    options per hour are combined to keep the product small.
    """
    if block_size < 1 or not slots:
        return []

    deduped = _best_by_position(slots)

    if block_size == 1:
        candidates = [BlockCandidate((slot,), slot.score) for slot in deduped.values()]
        candidates.sort(key=lambda c: -c.total_score)
        return candidates

    # day -> hour -> room options, best first
    options: dict[int, dict[int, list[Slot]]] = {}
    for slot in deduped.values():
        options.setdefault(slot.day, {}).setdefault(slot.hour, []).append(slot)

    seen = set()
    candidates = []
    for day in sorted(options):
        by_hour = options[day]
        if len(by_hour) < block_size:
            continue
        for hour_options in by_hour.values():
            hour_options.sort(key=lambda s: -s.score)

        first_hour, last_hour = min(by_hour), max(by_hour)
        for start in range(first_hour, last_hour - block_size + 2):
            per_offset = [by_hour.get(start + offset, [])[:TOP_OPTIONS_PER_OFFSET]
                          for offset in range(block_size)]
            if any(not opts for opts in per_offset):
                continue
            for combo in itertools.product(*per_offset):
                signature = tuple(s.position for s in combo)
                if signature in seen:
                    continue
                seen.add(signature)
                candidates.append(BlockCandidate(tuple(combo), sum(s.score for s in combo)))

    candidates.sort(key=lambda c: -c.total_score)
    return candidates


def generate_candidates(group: LessonGroup, teachers_by_id: dict[str, Teacher],
                        classes_by_id: dict[str, ClassSection], rooms: list[Room],
                        calendar: CalendarConfig, occupied: set[str]) -> list[BlockCandidate]:
    """Scored placements for one group, best first.

    A group whose teacher or class is missing gets no candidates; it is a
    dead group and ends up unassigned.
    """
    teacher = teachers_by_id.get(group.teacher_id)
    cls = classes_by_id.get(group.class_id)
    if teacher is None or cls is None:
        logger.debug(f"Dead group {group.key}: missing {'teacher' if teacher is None else 'class'}")
        return []

    slots = generate_slots(group, teacher, cls, rooms, calendar, occupied)
    candidates = build_block_candidates(slots, group.block_size)
    logger.debug(f"Group {group.key} x{group.block_size}: {len(slots)} slots, {len(candidates)} candidates")
    return candidates
