"""
School calendar: the ordered lesson time slots of each day of the week.

Days may have different numbers of lessons. An hour index is always relative
to its own day's sequence (hour 0 is the first lesson of that day).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

DAYS_OF_WEEK = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday']


@dataclass(frozen=True)
class TimeRange:
    start: str  # "HH:MM"
    end: str

    @property
    def label(self) -> str:
        if not self.start and not self.end:
            return ''
        return f'{self.start}-{self.end}'


@dataclass
class CalendarConfig:
    days_in_week: int
    day_slots: list[list[TimeRange]] = field(default_factory=list)

    @classmethod
    def uniform(cls, days_in_week: int, lesson_times: list[TimeRange]) -> 'CalendarConfig':
        """Same lesson times on every day."""
        return cls(days_in_week=days_in_week,
                   day_slots=[list(lesson_times) for _ in range(days_in_week)])

    def lesson_count(self, day: int) -> int:
        if day < 0 or day >= self.days_in_week or day >= len(self.day_slots):
            return 0
        return len(self.day_slots[day])

    @property
    def max_lessons(self) -> int:
        """Longest day of the week, in lessons."""
        return max((self.lesson_count(d) for d in range(self.days_in_week)), default=0)

    def days(self) -> range:
        return range(self.days_in_week)

    def slot_label(self, day: int, hour: int) -> str:
        """Human readable label such as 'Tuesday 09:50-10:30' or 'Tuesday lesson 3'."""
        day_name = DAYS_OF_WEEK[day] if 0 <= day < len(DAYS_OF_WEEK) else f'Day {day + 1}'
        if 0 <= hour < self.lesson_count(day):
            label = self.day_slots[day][hour].label
            if label:
                return f'{day_name} {label}'
        return f'{day_name} lesson {hour + 1}'


def generate_default_times(count: int, start: str, duration: int, break_time: int) -> list[TimeRange]:
    """Lay out `count` lessons of `duration` minutes from `start`, with breaks in between.

    A malformed start time yields `count` empty ranges so the day still has
    the right number of slots.
    """
    if not start or ':' not in start:
        return [TimeRange('', '') for _ in range(count)]

    current = datetime.strptime(start, '%H:%M')
    times = []
    for i in range(count):
        lesson_start = current
        current = current + timedelta(minutes=duration)
        times.append(TimeRange(lesson_start.strftime('%H:%M'), current.strftime('%H:%M')))
        if i < count - 1:
            current = current + timedelta(minutes=break_time)
    return times


def calendar_from_dict(data: dict) -> CalendarConfig:
    """Build a calendar from the wire shape.

    Accepts either per-day `daySlots` or a single `lessonTimes` list shared
    by all days (the editor's default layout).
    """
    days_in_week = int(data.get('daysInWeek', 5))
    day_slots = data.get('daySlots')
    if day_slots:
        return CalendarConfig(
            days_in_week=days_in_week,
            day_slots=[[TimeRange(t.get('start', ''), t.get('end', '')) for t in day]
                       for day in day_slots],
        )
    lesson_times = [TimeRange(t.get('start', ''), t.get('end', ''))
                    for t in data.get('lessonTimes') or []]
    return CalendarConfig.uniform(days_in_week, lesson_times)
