"""
Curriculum expansion: weekly-hour requirements -> one-hour units -> lesson groups.
"""

from dataclasses import dataclass, field

from models import ClassSection


@dataclass(frozen=True)
class AtomicRequirement:
    class_id: str
    teacher_id: str
    lesson_name: str

    def to_dict(self) -> dict:
        return {'classId': self.class_id, 'teacherId': self.teacher_id, 'lessonName': self.lesson_name}


@dataclass
class LessonGroup:
    """All hours of one lesson for one class with one teacher, placed as one block."""
    class_id: str
    teacher_id: str
    lesson_name: str
    requirements: list[AtomicRequirement] = field(default_factory=list)
    candidates: list = field(default_factory=list)  # list[BlockCandidate], filled by the candidate generator
    priority: float = 0.0

    @property
    def block_size(self) -> int:
        return len(self.requirements)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.class_id, self.lesson_name, self.teacher_id)


def expand_requirements(classes: list[ClassSection]) -> list[AtomicRequirement]:
    """One AtomicRequirement per weekly hour of every curriculum entry.

    Returns an empty list when no class has curriculum entries; the caller
    decides how to report that.
    """
    units = []
    for cls in classes:
        for item in cls.curriculum:
            for _ in range(max(item.weekly_hours, 0)):
                units.append(AtomicRequirement(
                    class_id=cls.id,
                    teacher_id=item.teacher_id,
                    lesson_name=item.lesson_name,
                ))
    return units


def group_requirements(units: list[AtomicRequirement]) -> list[LessonGroup]:
    """Group units by (class, lesson, teacher), keeping first-seen order."""
    groups: dict[tuple[str, str, str], LessonGroup] = {}
    for unit in units:
        key = (unit.class_id, unit.lesson_name, unit.teacher_id)
        if key not in groups:
            groups[key] = LessonGroup(
                class_id=unit.class_id,
                teacher_id=unit.teacher_id,
                lesson_name=unit.lesson_name,
            )
        groups[key].requirements.append(unit)
    return list(groups.values())


def summarize_requirements(units: list[AtomicRequirement]) -> list[dict]:
    """Hours to place per (class, lesson, teacher), for display before a run."""
    return [
        {
            'id': f'{g.class_id}|{g.lesson_name}|{g.teacher_id}',
            'classId': g.class_id,
            'lessonName': g.lesson_name,
            'teacherId': g.teacher_id,
            'hours': g.block_size,
        }
        for g in group_requirements(units)
    ]
