"""
Records the assignment engine works on.

These mirror the editor's saved data. The `*_from_dict` helpers accept the
camelCase JSON the frontend sends; `to_dict` goes the other way.
"""

import uuid
from dataclasses import dataclass, field
from typing import Optional

from availability import Availability, parse_availability


def generate_id() -> str:
    return uuid.uuid4().hex[:8]


# Occupancy keys: one token per resource-hour already taken
def teacher_key(teacher_id: str, day: int, hour: int) -> str:
    return f't-{teacher_id}-{day}-{hour}'


def class_key(class_id: str, day: int, hour: int) -> str:
    return f'c-{class_id}-{day}-{hour}'


def room_key(room_id: str, day: int, hour: int) -> str:
    return f'r-{room_id}-{day}-{hour}'


@dataclass
class Teacher:
    id: str
    name: str
    code: str = ''
    taught_lessons: set[str] = field(default_factory=set)
    availability: Availability = field(default_factory=dict)


@dataclass
class CurriculumRequirement:
    id: str
    class_id: str
    teacher_id: str
    lesson_name: str
    weekly_hours: int


@dataclass
class ClassSection:
    id: str
    name: str
    level: str = ''
    availability: Availability = field(default_factory=dict)
    curriculum: list[CurriculumRequirement] = field(default_factory=list)
    active_hour_range: Optional[tuple[int, int]] = None  # only used when availability has no UNAVAILABLE marks


@dataclass
class Room:
    id: str
    name: str
    capacity: int = 0
    availability: Availability = field(default_factory=dict)


@dataclass
class Assignment:
    id: str
    lesson_name: str
    teacher_id: str
    class_id: str
    day: int
    hour: int
    room_id: Optional[str] = None

    def occupancy_keys(self) -> list[str]:
        keys = [teacher_key(self.teacher_id, self.day, self.hour),
                class_key(self.class_id, self.day, self.hour)]
        if self.room_id:
            keys.append(room_key(self.room_id, self.day, self.hour))
        return keys

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'lessonName': self.lesson_name,
            'teacherId': self.teacher_id,
            'classId': self.class_id,
            'day': self.day,
            'hour': self.hour,
            'roomId': self.room_id,
        }


def teacher_from_dict(data: dict) -> Teacher:
    return Teacher(
        id=data['id'],
        name=data.get('name', ''),
        code=data.get('code', ''),
        taught_lessons=set(data.get('lessons') or []),
        availability=parse_availability(data.get('availability')),
    )


def class_from_dict(data: dict) -> ClassSection:
    class_id = data['id']
    curriculum = [
        CurriculumRequirement(
            id=item.get('id') or generate_id(),
            class_id=class_id,
            teacher_id=item['teacherId'],
            lesson_name=item['lessonName'],
            weekly_hours=int(item.get('weeklyHours', 1)),
        )
        for item in data.get('curriculum') or []
    ]
    active = data.get('activeHourRange')
    return ClassSection(
        id=class_id,
        name=data.get('name', ''),
        level=data.get('level', ''),
        availability=parse_availability(data.get('availability')),
        curriculum=curriculum,
        active_hour_range=(int(active[0]), int(active[1])) if active else None,
    )


def room_from_dict(data: dict) -> Room:
    return Room(
        id=data['id'],
        name=data.get('name', ''),
        capacity=int(data.get('capacity') or 0),
        availability=parse_availability(data.get('availability')),
    )


def assignment_from_dict(data: dict) -> Assignment:
    return Assignment(
        id=data.get('id') or generate_id(),
        lesson_name=data['lessonName'],
        teacher_id=data['teacherId'],
        class_id=data['classId'],
        day=int(data['day']),
        hour=int(data['hour']),
        room_id=data.get('roomId') or None,
    )
