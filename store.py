"""
In-memory tuition document with CRUD, enrollment reconciliation and
session bookkeeping.

Every mutating method commits: the document is handed to the storage
backend (best effort) and subscribers receive a ``{"source": ...}`` event.
Lookups by id return ``None`` when the record does not exist.
"""

import logging
from datetime import date as date_cls
from typing import Any, Callable, Dict, List, Mapping, Optional

from normalizer import empty_document, normalize
from schemas import AttendanceStatus

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]

STUDENT_PREFIX = "STU"
CLASS_PREFIX = "CLS"
TEACHER_PREFIX = "TEA"
ENROLLMENT_PREFIX = "ENR"
SESSION_PREFIX = "SES"


def _find(items: List[Dict[str, Any]], record_id: str) -> Optional[Dict[str, Any]]:
    return next((it for it in items if it.get("id") == record_id), None)


def _without_id(payload: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    return {k: v for k, v in (payload or {}).items() if k != "id"}


class TuitionStore:
    def __init__(self, document: Optional[Mapping[str, Any]] = None, storage=None):
        self.data: Dict[str, Any] = normalize(document) if document is not None else empty_document()
        self.storage = storage
        self._listeners: List[Listener] = []

    # ---------- Notification & persistence ----------
    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def save(self) -> bool:
        if self.storage is None:
            return False
        try:
            self.storage.save(self.data)
            return True
        except Exception as e:
            # in-memory state stays authoritative; the next save catches up
            logger.warning(f"Saving tuition document failed: {e}")
            return False

    def _commit(self, source: str) -> None:
        logger.debug(f"Committed {source}")
        self.save()
        for listener in list(self._listeners):
            listener({"source": source})

    def replace_document(self, raw: Any, source: str = "file") -> Dict[str, Any]:
        """Swap in a new document (import, "new"); last writer wins."""
        self.data = normalize(raw)
        logger.info(
            f"Loaded {len(self.data['students'])} students, {len(self.data['enrollments'])} enrollments, "
            f"{len(self.data['classes'])} classes ({source})"
        )
        self._commit(source)
        return self.data

    # ---------- Identifiers ----------
    def next_id(self, prefix: str) -> str:
        key = f"seq:{prefix}"
        n = int(self.data["meta"].get(key) or 0) + 1
        self.data["meta"][key] = n
        return f"{prefix}-{n:06d}"

    # ---------- Lookups ----------
    def student_by_id(self, student_id: str) -> Optional[Dict[str, Any]]:
        return _find(self.data["students"], student_id)

    def class_by_id(self, class_id: str) -> Optional[Dict[str, Any]]:
        return _find(self.data["classes"], class_id)

    def teacher_by_id(self, teacher_id: str) -> Optional[Dict[str, Any]]:
        return _find(self.data["teachers"], teacher_id)

    def roster_for_class(self, class_id: str) -> List[str]:
        return [e.get("studentId") for e in self.data["enrollments"]
                if e.get("classId") == class_id and e.get("studentId")]

    def session_for(self, class_id: str, ymd: str) -> Optional[Dict[str, Any]]:
        return next(
            (s for s in self.data["sessions"] if s.get("classId") == class_id and s.get("date") == ymd),
            None,
        )

    # ---------- Students ----------
    def add_student(self, payload: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        student = {"id": self.next_id(STUDENT_PREFIX), "status": "active"} | _without_id(payload)
        if not str(student.get("studentId") or "").strip():
            student["studentId"] = student["id"]
        self.data["students"].append(student)
        self._commit("addStudent")
        return student

    def update_student(self, student_id: str, patch: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        student = self.student_by_id(student_id)
        if student is None:
            return None
        student.update(_without_id(patch))
        self._commit("updateStudent")
        return student

    def delete_student(self, student_id: str) -> bool:
        before = len(self.data["students"])
        self.data["students"] = [s for s in self.data["students"] if s.get("id") != student_id]
        self.data["enrollments"] = [e for e in self.data["enrollments"] if e.get("studentId") != student_id]
        self._commit("deleteStudent")
        return len(self.data["students"]) < before

    # ---------- Classes ----------
    def add_class(self, payload: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        cls = {
            "id": self.next_id(CLASS_PREFIX),
            "priceVnd": 0,
            "defaultDurationHrs": 1,
            "teacherRatePerHour": 0,
            "notes": "",
            "monthNotes": {},
        } | _without_id(payload)
        self.data["classes"].append(cls)
        self._commit("addClass")
        return cls

    def update_class(self, class_id: str, patch: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        cls = self.class_by_id(class_id)
        if cls is None:
            return None
        cls.update(_without_id(patch))
        self._commit("updateClass")
        return cls

    def delete_class(self, class_id: str) -> bool:
        before = len(self.data["classes"])
        self.data["classes"] = [c for c in self.data["classes"] if c.get("id") != class_id]
        self.data["enrollments"] = [e for e in self.data["enrollments"] if e.get("classId") != class_id]
        self.data["sessions"] = [s for s in self.data["sessions"] if s.get("classId") != class_id]
        self._commit("deleteClass")
        return len(self.data["classes"]) < before

    def set_class_teacher(self, class_id: str, teacher_id: Optional[str]) -> Optional[Dict[str, Any]]:
        cls = self.class_by_id(class_id)
        if cls is None:
            return None
        teacher = self.teacher_by_id(teacher_id) if teacher_id else None
        cls["teacherId"] = teacher["id"] if teacher else None
        cls["teacherName"] = teacher.get("name") if teacher else None
        rate = teacher.get("ratePerHour") if teacher else None
        if isinstance(rate, (int, float)) and not isinstance(rate, bool):
            cls["teacherRatePerHour"] = rate
        self._commit("setClassTeacher")
        return cls

    def set_month_note(self, class_id: str, ym: str, text: str) -> Optional[Dict[str, Any]]:
        cls = self.class_by_id(class_id)
        if cls is None:
            return None
        cls.setdefault("monthNotes", {})[ym] = text or ""
        self._commit("setMonthNote")
        return cls

    # ---------- Teachers ----------
    def add_teacher(self, payload: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        teacher = {"id": self.next_id(TEACHER_PREFIX), "ratePerHour": 0} | _without_id(payload)
        self.data["teachers"].append(teacher)
        self._commit("addTeacher")
        return teacher

    def update_teacher(self, teacher_id: str, patch: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        teacher = self.teacher_by_id(teacher_id)
        if teacher is None:
            return None
        teacher.update(_without_id(patch))
        self._commit("updateTeacher")
        return teacher

    def delete_teacher(self, teacher_id: str) -> bool:
        before = len(self.data["teachers"])
        self.data["teachers"] = [t for t in self.data["teachers"] if t.get("id") != teacher_id]
        for row in self.data["classes"] + self.data["sessions"]:
            if row.get("teacherId") == teacher_id:
                row["teacherId"] = None
                row["teacherName"] = None
        self._commit("deleteTeacher")
        return len(self.data["teachers"]) < before

    # ---------- Enrollments ----------
    def _enroll(self, student_id, class_id, discount_pct=None, enrolled_at=None, notes=None):
        existing = next(
            (e for e in self.data["enrollments"]
             if e.get("studentId") == student_id and e.get("classId") == class_id),
            None,
        )
        if existing is not None:
            if discount_pct is not None:
                existing["discountPct"] = _as_number(discount_pct)
            if enrolled_at:
                existing["enrolledAt"] = enrolled_at
            return existing
        row = {
            "id": self.next_id(ENROLLMENT_PREFIX),
            "studentId": student_id,
            "classId": class_id,
            "discountPct": _as_number(discount_pct),
            "enrolledAt": enrolled_at or date_cls.today().isoformat(),
            "notes": notes or "",
        }
        self.data["enrollments"].append(row)
        return row

    def enroll(
        self,
        student_id: str,
        class_id: str,
        discount_pct: Optional[float] = None,
        enrolled_at: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Enroll a student, or update the discount/date of the existing row."""
        row = self._enroll(student_id, class_id, discount_pct, enrolled_at, notes)
        self._commit("enroll")
        return row

    def set_student_classes(self, student_id: str, desired: Mapping[str, Any]) -> List[Dict[str, Any]]:
        """Make the student's enrollments exactly the keys of ``desired``.

        ``desired`` maps class id to discount percentage.
        """
        desired = desired or {}
        self.data["enrollments"] = [
            e for e in self.data["enrollments"]
            if e.get("studentId") != student_id or e.get("classId") in desired
        ]
        rows = [self._enroll(student_id, cid, _as_number(disc)) for cid, disc in desired.items()]
        self._commit("setStudentClasses")
        return rows

    def enrollments_for(self, student_id: Optional[str] = None, class_id: Optional[str] = None):
        return [
            e for e in self.data["enrollments"]
            if (student_id is None or e.get("studentId") == student_id)
            and (class_id is None or e.get("classId") == class_id)
        ]

    # ---------- Sessions ----------
    def _new_session(self, class_id: str, ymd: str, status: str) -> Dict[str, Any]:
        cls = self.class_by_id(class_id) or {}
        rate = cls.get("teacherRatePerHour")
        session = {
            "id": self.next_id(SESSION_PREFIX),
            "classId": class_id,
            "date": ymd,
            "status": status,
            "durationHrs": cls.get("defaultDurationHrs") or 1,
            "teacherId": cls.get("teacherId"),
            "teacherName": cls.get("teacherName"),
            "teacherRatePerHourSnap": rate if isinstance(rate, (int, float)) and not isinstance(rate, bool) else None,
            "note": "",
            "attendance": {},
        }
        self.data["sessions"].append(session)
        return session

    def _remove_session(self, class_id: str, ymd: str) -> bool:
        before = len(self.data["sessions"])
        self.data["sessions"] = [
            s for s in self.data["sessions"] if not (s.get("classId") == class_id and s.get("date") == ymd)
        ]
        return len(self.data["sessions"]) < before

    def toggle_held(self, class_id: str, ymd: str) -> Optional[Dict[str, Any]]:
        """No session -> held, non-held -> held, held -> removed."""
        session = self.session_for(class_id, ymd)
        if session is None:
            session = self._new_session(class_id, ymd, "held")
        elif session.get("status") != "held":
            session["status"] = "held"
        else:
            self._remove_session(class_id, ymd)
            session = None
        self._commit("sessionsChanged")
        return session

    def toggle_cancelled(self, class_id: str, ymd: str) -> Optional[Dict[str, Any]]:
        """No session -> cancelled, cancelled -> removed, otherwise cancelled."""
        session = self.session_for(class_id, ymd)
        if session is None:
            session = self._new_session(class_id, ymd, "cancelled")
        elif session.get("status") == "cancelled":
            self._remove_session(class_id, ymd)
            session = None
        else:
            session["status"] = "cancelled"
        self._commit("sessionsChanged")
        return session

    def save_session(
        self,
        class_id: str,
        ymd: str,
        status: str = "held",
        duration_hrs: float = 1,
        teacher_id: Optional[str] = None,
        note: str = "",
    ) -> Dict[str, Any]:
        """Upsert the (class, date) session and snapshot the teacher's name and rate."""
        teacher = self.teacher_by_id(teacher_id) if teacher_id else None
        existing = self.session_for(class_id, ymd)
        payload = {
            "id": existing["id"] if existing else self.next_id(SESSION_PREFIX),
            "classId": class_id,
            "date": ymd,
            "status": status or "held",
            "durationHrs": duration_hrs if duration_hrs is not None else 1,
            "teacherId": teacher_id or None,
            "teacherName": (teacher.get("name") if teacher else None) or teacher_id or None,
            "teacherRatePerHourSnap": teacher.get("ratePerHour") if teacher else None,
            "note": note or "",
        }
        if existing is not None:
            existing.update(payload)
            session = existing
        else:
            session = payload | {"attendance": {}}
            self.data["sessions"].append(session)
        self._commit("sessionsChanged")
        return session

    def clear_session(self, class_id: str, ymd: str) -> bool:
        removed = self._remove_session(class_id, ymd)
        self._commit("sessionsChanged")
        return removed

    def set_attendance(
        self, class_id: str, ymd: str, student_id: str, status: AttendanceStatus
    ) -> Optional[Dict[str, Any]]:
        session = self.session_for(class_id, ymd)
        if session is None:
            return None
        session.setdefault("attendance", {})[student_id] = AttendanceStatus(status).value
        self._commit("attendanceChanged")
        return session

    def sessions(self, class_id: Optional[str] = None, ym: Optional[str] = None) -> List[Dict[str, Any]]:
        rows = [
            s for s in self.data["sessions"]
            if (class_id is None or s.get("classId") == class_id)
            and (ym is None or str(s.get("date") or "")[:7] == ym)
        ]
        return sorted(rows, key=lambda s: str(s.get("date") or ""))

    # ---------- Meta ----------
    def set_admin_notes(self, text: str) -> str:
        self.data["meta"]["adminNotes"] = text or ""
        self._commit("adminNotes")
        return self.data["meta"]["adminNotes"]

    def extra_expenses(self, ym: str) -> List[Dict[str, Any]]:
        return list((self.data["meta"].get("extraExpenses") or {}).get(ym) or [])

    def add_extra_expense(self, ym: str, name: str, amount: float) -> List[Dict[str, Any]]:
        expenses = self.data["meta"].setdefault("extraExpenses", {})
        expenses.setdefault(ym, []).append({"name": name, "amount": _as_number(amount)})
        self._commit("extraExpenses")
        return self.extra_expenses(ym)


def _as_number(value: Any) -> float:
    """Numeric value of ``value`` or 0, mirroring ``Number(x) || 0``."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value if value == value else 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return number if number == number else 0
