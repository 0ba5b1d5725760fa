"""Coerce any loaded JSON value into the canonical document shape."""

import math
from typing import Any, Dict

COLLECTIONS = ("students", "classes", "teachers", "enrollments", "sessions")


def empty_document() -> Dict[str, Any]:
    return {name: [] for name in COLLECTIONS} | {"meta": {}}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _normalize_class(cls: Dict[str, Any]) -> None:
    if not _is_number(cls.get("defaultDurationHrs")):
        cls["defaultDurationHrs"] = 1
    if not _is_number(cls.get("priceVnd")):
        cls["priceVnd"] = 0
    if not _is_number(cls.get("teacherRatePerHour")):
        cls["teacherRatePerHour"] = 0
    if not isinstance(cls.get("notes"), str):
        cls["notes"] = ""
    if not isinstance(cls.get("monthNotes"), dict):
        cls["monthNotes"] = {}


def _normalize_session(session: Dict[str, Any]) -> None:
    date = session.get("date")
    if not isinstance(date, str):
        date = "" if date is None else str(date)
    session["date"] = date[:10]
    if not _is_number(session.get("durationHrs")):
        session["durationHrs"] = 1

    # Fold the legacy `present` id list into the attendance mapping.
    attendance = session.get("attendance")
    if not isinstance(attendance, dict):
        attendance = {}
    legacy = session.pop("present", None)
    if isinstance(legacy, list):
        for student_id in legacy:
            if isinstance(student_id, str):
                attendance.setdefault(student_id, "present")
    session["attendance"] = attendance


def _counter(value: Any) -> int:
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return 0
    if not _is_number(value) or not math.isfinite(value):
        return 0
    return max(int(value), 0)


def _normalize_meta(meta: Dict[str, Any]) -> None:
    for key in list(meta):
        if isinstance(key, str) and key.startswith("seq:"):
            meta[key] = _counter(meta[key])
    if "extraExpenses" in meta:
        expenses = meta["extraExpenses"]
        if not isinstance(expenses, dict):
            expenses = meta["extraExpenses"] = {}
        for ym, items in list(expenses.items()):
            if not isinstance(items, list):
                expenses[ym] = []


def normalize(raw: Any) -> Dict[str, Any]:
    """Return the canonical form of ``raw``.

    Never raises: missing or mistyped fields fall back to defaults, and
    entries of a collection that are not objects are dropped. Normalizing
    a canonical document leaves it unchanged.
    """
    if not isinstance(raw, dict):
        raw = {}

    doc: Dict[str, Any] = {}
    for name in COLLECTIONS:
        items = raw.get(name)
        doc[name] = [it for it in items if isinstance(it, dict)] if isinstance(items, list) else []
    meta = raw.get("meta")
    doc["meta"] = meta if isinstance(meta, dict) else {}
    _normalize_meta(doc["meta"])

    for cls in doc["classes"]:
        _normalize_class(cls)
    for session in doc["sessions"]:
        _normalize_session(session)
    return doc
