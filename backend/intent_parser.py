"""
Nexus Scheduling Agent - Intent Parser
Rule-based slot extraction for free-text scheduling requests.

Every slot is filled by an ordered list of small rules; the first rule that
matches wins and unmatched slots fall back to defaults. ``parse`` never raises.

Known ambiguity: a bare hour below 12 with no am/pm is read as afternoon
("homework at 5" is 17:00). A zero-padded hour ("08:00") is read as 24-hour.
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Callable, List, Optional, Tuple

from models import ActionType


# ============================================
# RESULT TYPES
# ============================================

@dataclass
class DateMatch:
    target: date
    range_start: date
    range_end: date
    keyword: Optional[str]


@dataclass
class TimeMatch:
    hour: int
    minute: int
    span: Tuple[int, int]


@dataclass
class DurationMatch:
    minutes: int
    span: Tuple[int, int]


@dataclass
class ScheduleActionDraft:
    """Structured reading of one request. ``start``/``end`` are in the reference timezone."""
    action_type: ActionType
    title: str
    target_date: date
    hour: int
    minute: int
    has_explicit_time: bool
    duration_minutes: int
    has_explicit_duration: bool
    date_keyword: Optional[str]
    range_start: date
    range_end: date
    original_text: str
    tz: tzinfo
    replacement_title: Optional[str] = None

    @property
    def start_time(self) -> time:
        return time(self.hour, self.minute)

    @property
    def start(self) -> datetime:
        return datetime.combine(self.target_date, self.start_time, tzinfo=self.tz)

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    @property
    def has_explicit_date(self) -> bool:
        return self.date_keyword is not None


# ============================================
# ACTION TYPE RULES
# ============================================

ACTION_RULES: List[Tuple[ActionType, re.Pattern]] = [
    (ActionType.REPLACE, re.compile(r"\b(replace|instead of|swap)\b", re.I)),
    (ActionType.CANCEL, re.compile(r"\b(cancel|remove|delete|clear)\b", re.I)),
    (ActionType.MOVE, re.compile(r"\b(move|reschedule|shift|push)\b", re.I)),
]


def detect_action_type(text: str) -> ActionType:
    for action_type, pattern in ACTION_RULES:
        if pattern.search(text):
            return action_type
    return ActionType.ADD


# ============================================
# DATE RULES
# ============================================

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
WEEKDAY_PATTERN = re.compile(r"\b(" + "|".join(WEEKDAYS) + r")\b", re.I)


def week_bounds(day: date) -> Tuple[date, date]:
    """Monday and Sunday of the week containing ``day``."""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def _single_day(day: date, keyword: str) -> DateMatch:
    return DateMatch(day, day, day, keyword)


def rule_tomorrow(text: str, today: date) -> Optional[DateMatch]:
    if re.search(r"\btomorrow\b", text, re.I):
        return _single_day(today + timedelta(days=1), "tomorrow")
    return None


def rule_today(text: str, today: date) -> Optional[DateMatch]:
    if re.search(r"\b(today|tonight)\b", text, re.I):
        return _single_day(today, "today")
    return None


def rule_next_week(text: str, today: date) -> Optional[DateMatch]:
    if re.search(r"\bnext week\b", text, re.I):
        monday, sunday = week_bounds(today + timedelta(days=7))
        return DateMatch(monday, monday, sunday, "next week")
    return None


def rule_this_week(text: str, today: date) -> Optional[DateMatch]:
    if re.search(r"\bthis week\b", text, re.I):
        monday, sunday = week_bounds(today)
        return DateMatch(monday, monday, sunday, "this week")
    return None


def rule_next_month(text: str, today: date) -> Optional[DateMatch]:
    if re.search(r"\bnext month\b", text, re.I):
        return _single_day(add_months(today, 1), "next month")
    return None


def rule_weekday(text: str, today: date) -> Optional[DateMatch]:
    match = WEEKDAY_PATTERN.search(text)
    if not match:
        return None
    weekday = WEEKDAYS.index(match.group(1).lower())
    days_ahead = (weekday - today.weekday()) % 7
    # Naming today's weekday means next week's occurrence
    if days_ahead == 0:
        days_ahead = 7
    return _single_day(today + timedelta(days=days_ahead), match.group(1).lower())


DATE_RULES: List[Callable[[str, date], Optional[DateMatch]]] = [
    rule_tomorrow,
    rule_next_week,
    rule_this_week,
    rule_next_month,
    rule_today,
    rule_weekday,
]


def extract_date(text: str, today: date) -> Optional[DateMatch]:
    for rule in DATE_RULES:
        found = rule(text, today)
        if found:
            return found
    return None


# ============================================
# TIME RULES
# ============================================

UNIT_LOOKAHEAD = r"(?!\.\d|\s*(?:minutes?|mins?|hours?|hrs?|%|:\d))"


def to_24_hour(hour: int, meridiem: Optional[str], zero_padded: bool = False) -> Optional[int]:
    """Convert a clock hour. Returns None for impossible values."""
    if meridiem:
        meridiem = meridiem.replace(".", "").lower()
        if not 1 <= hour <= 12:
            return None
        if meridiem == "pm" and hour < 12:
            return hour + 12
        if meridiem == "am" and hour == 12:
            return 0
        return hour
    if hour > 23:
        return None
    if zero_padded:
        return hour
    if hour < 12:
        return hour + 12
    return hour


def rule_clock_time(text: str) -> Optional[TimeMatch]:
    for match in re.finditer(r"\b(\d{1,2}):(\d{2})\s*(a\.?m\.?|p\.?m\.?)?(?![\w])", text, re.I):
        raw_hour, minute = match.group(1), int(match.group(2))
        hour = to_24_hour(int(raw_hour), match.group(3), zero_padded=raw_hour.startswith("0"))
        if hour is not None and minute < 60:
            return TimeMatch(hour, minute, match.span())
    return None


def rule_meridiem_hour(text: str) -> Optional[TimeMatch]:
    for match in re.finditer(r"\b(\d{1,2})\s*(a\.?m\.?|p\.?m\.?)(?![\w])", text, re.I):
        hour = to_24_hour(int(match.group(1)), match.group(2))
        if hour is not None:
            return TimeMatch(hour, 0, match.span())
    return None


def rule_at_hour(text: str) -> Optional[TimeMatch]:
    for match in re.finditer(r"\bat\s+(\d{1,2})\b" + UNIT_LOOKAHEAD, text, re.I):
        raw_hour = match.group(1)
        hour = to_24_hour(int(raw_hour), None, zero_padded=raw_hour.startswith("0"))
        if hour is not None:
            return TimeMatch(hour, 0, match.span(1))
    return None


def rule_bare_hour(text: str) -> Optional[TimeMatch]:
    for match in re.finditer(r"(?<![\d.:])\b(\d{1,2})\b" + UNIT_LOOKAHEAD, text):
        raw_hour = match.group(1)
        hour = to_24_hour(int(raw_hour), None, zero_padded=raw_hour.startswith("0"))
        if hour is not None and int(raw_hour) > 0:
            return TimeMatch(hour, 0, match.span())
    return None


TIME_RULES: List[Callable[[str], Optional[TimeMatch]]] = [
    rule_clock_time,
    rule_meridiem_hour,
    rule_at_hour,
    rule_bare_hour,
]


def extract_time(text: str) -> Optional[TimeMatch]:
    for rule in TIME_RULES:
        found = rule(text)
        if found:
            return found
    return None


# ============================================
# DURATION RULES
# ============================================

def rule_for_minutes(text: str) -> Optional[DurationMatch]:
    match = re.search(r"\bfor\s+(\d+)\s*(?:minutes?|mins?)\b", text, re.I)
    if match and int(match.group(1)) > 0:
        return DurationMatch(int(match.group(1)), match.span())
    return None


def rule_minutes(text: str) -> Optional[DurationMatch]:
    match = re.search(r"\b(\d+)\s*(?:minutes?|mins?)\b", text, re.I)
    if match and int(match.group(1)) > 0:
        return DurationMatch(int(match.group(1)), match.span())
    return None


def rule_hours(text: str) -> Optional[DurationMatch]:
    match = re.search(r"\b(\d+(?:\.\d+)?)\s*(?:hours?|hrs?)\b", text, re.I)
    if match:
        minutes = round(float(match.group(1)) * 60)
        if minutes > 0:
            return DurationMatch(minutes, match.span())
    return None


DURATION_RULES: List[Callable[[str], Optional[DurationMatch]]] = [
    rule_for_minutes,
    rule_minutes,
    rule_hours,
]


def extract_duration(text: str) -> Optional[DurationMatch]:
    for rule in DURATION_RULES:
        found = rule(text)
        if found:
            return found
    return None


# ============================================
# TITLE RULES
# ============================================

COMMAND_WORDS = {
    "schedule", "add", "create", "block", "book", "put", "set", "plan",
    "move", "reschedule", "shift", "push", "cancel", "remove", "delete",
    "clear", "replace", "swap", "instead", "please", "can", "could", "you",
}

ARTICLES = {"a", "an", "the", "some", "my", "me", "i", "up"}

STOP_WORDS = COMMAND_WORDS | ARTICLES | {
    "time", "for", "at", "on", "to", "in", "from", "by", "until",
    "today", "tonight", "tomorrow", "next", "this", "week", "month",
    "am", "pm", "minute", "minutes", "min", "mins", "hour", "hours", "hr", "hrs",
} | set(WEEKDAYS)

WORD_PATTERN = re.compile(r"[A-Za-z][A-Za-z'&-]*")


def _remove_spans(text: str, spans: List[Tuple[int, int]]) -> str:
    for start, end in sorted(spans, reverse=True):
        text = text[:start] + " " + text[end:]
    return text


def _title_case(words: List[str]) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in words)


def clean_title(text: str, stop_words: set = STOP_WORDS) -> str:
    words = [w for w in WORD_PATTERN.findall(text) if w.lower() not in stop_words]
    return _title_case(words)


def extract_title(
    text: str,
    time_match: Optional[TimeMatch],
    duration_match: Optional[DurationMatch],
) -> str:
    spans = [m.span for m in (time_match, duration_match) if m is not None]
    title = clean_title(_remove_spans(text, spans))
    if title:
        return title
    if time_match is not None:
        title = clean_title(text[:time_match.span[0]], COMMAND_WORDS | ARTICLES)
        if title:
            return title
    return "Event"


# ============================================
# REPLACE SPLIT
# ============================================

REPLACE_PATTERNS = [
    # (pattern, index of the replaced part, index of the replacement part)
    (re.compile(r"\breplace\s+(.+?)\s+with\s+(.+)", re.I), 1, 2),
    (re.compile(r"\bswap\s+(.+?)\s+(?:for|with)\s+(.+)", re.I), 1, 2),
    (re.compile(r"(.+?)\s+instead of\s+(.+)", re.I), 2, 1),
]


def split_replace(text: str) -> Optional[Tuple[str, str]]:
    """``(replaced, replacement)`` text fragments of a replace request."""
    for pattern, old_index, new_index in REPLACE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(old_index), match.group(new_index)
    return None


def _fragment_title(fragment: str) -> str:
    return extract_title(fragment, extract_time(fragment), extract_duration(fragment))


# ============================================
# PARSE
# ============================================

def parse(
    user_text: str,
    reference: datetime,
    default_hour: int = 12,
    default_duration_minutes: int = 60,
) -> ScheduleActionDraft:
    """Read a scheduling request relative to the ``reference`` instant."""
    text = (user_text or "").strip()
    today = reference.date()
    tz = reference.tzinfo

    action_type = detect_action_type(text)

    date_match = extract_date(text, today)
    if date_match is None:
        monday, sunday = week_bounds(today)
        date_match = DateMatch(today, monday, sunday, None)

    time_match = extract_time(text)
    duration_match = extract_duration(text)

    replacement_title = None
    title = extract_title(text, time_match, duration_match)
    if action_type == ActionType.REPLACE:
        parts = split_replace(text)
        if parts:
            title = _fragment_title(parts[0])
            replacement_title = _fragment_title(parts[1])

    return ScheduleActionDraft(
        action_type=action_type,
        title=title,
        target_date=date_match.target,
        hour=time_match.hour if time_match else default_hour,
        minute=time_match.minute if time_match else 0,
        has_explicit_time=time_match is not None,
        duration_minutes=duration_match.minutes if duration_match else default_duration_minutes,
        has_explicit_duration=duration_match is not None,
        date_keyword=date_match.keyword,
        range_start=date_match.range_start,
        range_end=date_match.range_end,
        original_text=text,
        tz=tz,
        replacement_title=replacement_title,
    )
