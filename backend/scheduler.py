from datetime import datetime, date, timedelta
import math
from typing import List, Dict, Any, Optional, Union

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

REGENERATION_TRIGGERS = frozenset([
    "study_session_completed",
    "subject_added",
    "subject_updated",
    "subject_deleted",
    "availability_changed",
    # older vocabulary, same meaning
    "subject_deadline_changed",
    "subject_removed",
    "week_changed",
])

EPS = 1e-6

DateLike = Union[date, datetime, str]


def _to_datetime(value: Optional[DateLike]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None

def days_between(start: DateLike, end: DateLike) -> int:
    """Whole days from start to end, floored. Plain dates count as midnight."""
    a, b = _to_datetime(start), _to_datetime(end)
    return math.floor((b - a).total_seconds() / 86400)

def this_week_monday(today: Optional[date] = None) -> date:
    today = today or date.today()
    return today - timedelta(days=today.weekday())

def time_to_minutes(time_str: str) -> int:
    hours, minutes = str(time_str).split(":")
    return int(hours) * 60 + int(minutes)

def block_duration_hours(start_time: str, end_time: str) -> float:
    return (time_to_minutes(end_time) - time_to_minutes(start_time)) / 60

def add_minutes_to_time(time_str: str, minutes: float) -> str:
    """Advance an HH:MM time. Wraps at midnight without touching the day."""
    total = int(round(time_to_minutes(time_str) + minutes))
    hour = (total // 60) % 24
    minute = total % 60
    return f"{hour:02d}:{minute:02d}"


# ---------------------------------------------------------------------------
# priority / allocation / packing
# ---------------------------------------------------------------------------

def calculate_priority_score(subject: Dict[str, Any], now: Optional[DateLike] = None) -> float:
    """
    Composite 0-1 score: half exam proximity, half declared difficulty.
    Returns 0 when the exam has passed or the study window is empty.
    """
    if now is None:
        now = datetime.now()
    start = subject.get("start_date")
    exam = subject.get("exam_date")
    if start is None or exam is None:
        return 0.0

    total_days = days_between(start, exam)
    days_left = days_between(now, exam)
    if total_days <= 0 or days_left < 0:
        return 0.0

    time_urgency = 1 - (days_left / total_days)
    difficulty_factor = float(subject.get("difficulty") or 0) / 5
    return (time_urgency * 0.5) + (difficulty_factor * 0.5)

def allocate_weekly_time(subjects: List[Dict[str, Any]], total_available_hours: float) -> List[Dict[str, Any]]:
    if not subjects:
        return []

    total_priority = sum(s.get("priority_score") or 0 for s in subjects)
    if total_priority == 0:
        return subjects

    allocated = []
    for s in subjects:
        row = dict(s)
        row["allocated_time"] = ((s.get("priority_score") or 0) / total_priority) * float(total_available_hours)
        allocated.append(row)
    return allocated

def generate_schedule(subjects: List[Dict[str, Any]], free_time_blocks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Greedy packing, highest priority first. Every subject scans the free
    blocks from the first one; a used block keeps its end and has its start
    pushed forward. Hours that do not fit are dropped.
    """
    ordered = sorted(subjects, key=lambda s: s.get("priority_score") or 0, reverse=True)
    blocks = [dict(b) for b in free_time_blocks]
    schedule: List[Dict[str, Any]] = []

    for subject in ordered:
        remaining = float(subject.get("allocated_time") or 0)

        for block in blocks:
            if remaining <= EPS:
                break

            available = block_duration_hours(block["start_time"], block["end_time"])
            if available <= 0:
                continue

            hours = min(remaining, available)
            end_time = add_minutes_to_time(block["start_time"], hours * 60)
            placed = time_to_minutes(end_time) - time_to_minutes(block["start_time"])
            # less than half a minute left rounds to nothing
            if placed <= 0:
                break
            schedule.append({
                "subject_id": subject.get("id"),
                "subject_name": subject.get("name"),
                "day": block["day"],
                "start_time": block["start_time"],
                "end_time": end_time,
                "duration_minutes": placed,
            })
            remaining -= hours
            block["start_time"] = end_time

    return schedule

def should_regenerate(event_type: str) -> bool:
    return event_type in REGENERATION_TRIGGERS


def calculate_progress(minutes_spent: float, target_hours: float) -> float:
    """Percent of the target hours already studied, clamped to 0..100."""
    target_minutes = float(target_hours or 0) * 60
    if target_minutes == 0:
        return 0.0
    percentage = float(minutes_spent or 0) / target_minutes * 100
    return max(0.0, min(percentage, 100.0))
