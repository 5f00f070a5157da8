"""Guestbook entries: validation, formatting and pagination."""

from dataclasses import dataclass, field
import re
from datetime import datetime
from typing import List, Optional

FAVORITE_GAMES = {
    "somi": "The Secret of Monkey Island",
    "mi2": "Monkey Island 2: LeChuck's Revenge",
    "comi": "The Curse of Monkey Island",
}

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")

# Error page copy keyed by validation failure
SUBMISSION_ERRORS = {
    "missing": (
        "Arrr! Something went wrong!",
        "You must provide both a name and a message, ye scurvy dog!",
    ),
    "too_long": (
        "Arrr! Too many words!",
        "Keep your name under 50 characters and your message under 1000, matey!",
    ),
}


class SubmissionError(ValueError):
    """A guestbook form that can't be accepted."""

    def __init__(self, code: str):
        self.code = code
        self.title, self.detail = SUBMISSION_ERRORS[code]
        super().__init__(self.detail)


@dataclass
class Page:
    """One page of guestbook entries, newest first."""
    entries: List[dict]
    number: int
    total_pages: int
    total_entries: int
    first: int = 0   # 1-based index of the first entry shown
    last: int = 0
    numbers: List[int] = field(default_factory=list)

    @property
    def has_next(self) -> bool:
        return self.number < self.total_pages


def favorite_label(value: str) -> str:
    return FAVORITE_GAMES.get(value, value or "")


def clean_url(url: str) -> str:
    """Drop the untouched ``http://`` prefill left in the form."""
    url = (url or "").strip()
    if url in ("", "http://", "https://"):
        return ""
    return url


def format_date(when: datetime) -> str:
    """Format a date the 90s way: ``MM/DD/YYYY - H:MM AM``."""
    hours = when.hour % 12 or 12
    ampm = "PM" if when.hour >= 12 else "AM"
    return f"{when.month:02d}/{when.day:02d}/{when.year} - {hours}:{when.minute:02d} {ampm}"


def format_counter(count: int) -> str:
    """Pad to 7 digits, classic hit counter style."""
    return str(count).zfill(7)


def build_entry(
    form: dict,
    max_name_length: int = 50,
    max_message_length: int = 1000,
    now: Optional[datetime] = None,
) -> dict:
    """Validate a submitted form and return the entry to store.

    Raises:
        SubmissionError: when name or message is missing or too long.
    """
    name = (form.get("name") or "").strip()
    message = (form.get("message") or "").strip()

    if not name or not message:
        raise SubmissionError("missing")
    if len(name) > max_name_length or len(message) > max_message_length:
        raise SubmissionError("too_long")

    return {
        "name": name,
        "url": clean_url(form.get("url")),
        "message": message,
        "favorite": favorite_label(form.get("favorite") or ""),
        "date": format_date(now or datetime.now()),
    }


def parse_page(value) -> int:
    """Leading integer of the value (``"2abc"`` is page 2), else page 1."""
    match = _LEADING_INT.match(str(value or ""))
    return int(match.group(1)) if match else 1


def paginate(entries: List[dict], page: int, per_page: int = 10) -> Page:
    """Slice stored (oldest-first) entries into a newest-first page."""
    total = len(entries)
    total_pages = max(1, -(-total // per_page))
    page = min(max(page, 1), total_pages)

    start = (page - 1) * per_page
    newest_first = list(reversed(entries))
    page_entries = newest_first[start:start + per_page]

    return Page(
        entries=page_entries,
        number=page,
        total_pages=total_pages,
        total_entries=total,
        first=start + 1 if page_entries else 0,
        last=min(page * per_page, total),
        numbers=list(range(1, total_pages + 1)),
    )
