"""
Billing projections over a tuition document.

Everything here is read-only and recomputed on every call. A billing period
is a ``"YYYY-MM"`` string matched against the first 7 characters of a
session date. Only ``held`` sessions count.
"""

from typing import Any, Dict, List, Mapping, Optional

from schemas import (
    AttendanceCounts,
    AttendanceEntry,
    AttendanceStatus,
    ClassFinance,
    ExtraExpense,
    FinanceSummary,
    Invoice,
    InvoiceItem,
    PayrollLine,
    TeacherPayroll,
)

Document = Mapping[str, Any]


def _num(value: Any, default: float = 0) -> float:
    if isinstance(value, bool) or value is None:
        return default
    try:
        return float(value) if not isinstance(value, (int, float)) else value
    except (TypeError, ValueError):
        return default


def _by_id(items, record_id) -> Optional[Dict[str, Any]]:
    return next((it for it in items if it.get("id") == record_id), None)


def sessions_for(doc: Document, class_id: str, ym: str) -> List[Dict[str, Any]]:
    return [
        s for s in doc["sessions"]
        if s.get("classId") == class_id and str(s.get("date") or "")[:7] == ym
    ]


def held_sessions(doc: Document, class_id: str, ym: str) -> List[Dict[str, Any]]:
    return [s for s in sessions_for(doc, class_id, ym) if s.get("status") == "held"]


def resolve_attendance(session: Mapping[str, Any], student_id: str) -> AttendanceStatus:
    """Attendance of one student; anything unrecorded counts as present."""
    attendance = session.get("attendance")
    value = attendance.get(student_id) if isinstance(attendance, dict) else None
    try:
        return AttendanceStatus(value)
    except ValueError:
        return AttendanceStatus.present


def is_billable(session: Mapping[str, Any], student_id: str) -> bool:
    return resolve_attendance(session, student_id) is not AttendanceStatus.excused


def discounted_price(price: float, discount_pct: Any) -> float:
    return price * (100 - _num(discount_pct)) / 100


def revenue_for_detailed(doc: Document, cls: Mapping[str, Any], ym: str) -> float:
    """Class revenue with per-student discounts and excused absences applied."""
    price = _num(cls.get("priceVnd"))
    enrollments = [e for e in doc["enrollments"] if e.get("classId") == cls.get("id")]
    total = 0
    for session in held_sessions(doc, cls.get("id"), ym):
        for enrollment in enrollments:
            if is_billable(session, enrollment.get("studentId")):
                total += discounted_price(price, enrollment.get("discountPct"))
    return total


def revenue_for(doc: Document, cls: Mapping[str, Any], ym: str) -> float:
    """Coarse estimate: price x held sessions x roster size."""
    held = len(held_sessions(doc, cls.get("id"), ym))
    roster = sum(1 for e in doc["enrollments"] if e.get("classId") == cls.get("id"))
    return _num(cls.get("priceVnd")) * held * roster


def invoice_for_student(doc: Document, student_id: str, ym: str) -> Invoice:
    # first enrollment per class wins, so duplicate rows never double-bill
    first: Dict[str, Dict[str, Any]] = {}
    for enrollment in doc["enrollments"]:
        if enrollment.get("studentId") == student_id:
            first.setdefault(enrollment.get("classId"), enrollment)

    invoice = Invoice(student_id=student_id, month=ym)
    for class_id, enrollment in first.items():
        cls = _by_id(doc["classes"], class_id) or {}
        price = _num(cls.get("priceVnd"))
        subtotal = 0
        for session in held_sessions(doc, class_id, ym):
            if is_billable(session, student_id):
                subtotal += discounted_price(price, enrollment.get("discountPct"))
        invoice.items.append(
            InvoiceItem(class_id=class_id, class_name=cls.get("name") or class_id, amount=subtotal)
        )
        invoice.total += subtotal
    return invoice


def billable_hours(session: Mapping[str, Any], cls: Optional[Mapping[str, Any]]) -> float:
    """Session hours, never less than the class's default duration."""
    base = _num((cls or {}).get("defaultDurationHrs")) or 1
    raw = session.get("durationHrs")
    hours = _num(raw) if raw is not None else base
    return base if hours < base else hours


def cost_for(doc: Document, cls: Mapping[str, Any], ym: str) -> float:
    """Teacher cost of a class for the month."""
    base_rate = _num(cls.get("teacherRatePerHour"))
    total = 0
    for session in held_sessions(doc, cls.get("id"), ym):
        if session.get("teacherRatePerHourSnap") is not None:
            rate = _num(session["teacherRatePerHourSnap"])
        elif session.get("teacherId"):
            teacher = _by_id(doc["teachers"], session["teacherId"]) or {}
            rate = _num(teacher.get("ratePerHour")) or base_rate
        else:
            rate = base_rate
        total += rate * billable_hours(session, cls)
    return total


def net_for(doc: Document, cls: Mapping[str, Any], ym: str) -> float:
    return revenue_for_detailed(doc, cls, ym) - cost_for(doc, cls, ym)


def payroll_for_teacher(doc: Document, teacher: Mapping[str, Any], ym: str) -> TeacherPayroll:
    payroll = TeacherPayroll(
        teacher_id=teacher.get("id"),
        teacher_name=teacher.get("name") or teacher.get("id"),
        email=teacher.get("email"),
        month=ym,
    )
    sessions = [
        s for s in doc["sessions"]
        if s.get("status") == "held"
        and str(s.get("date") or "")[:7] == ym
        and s.get("teacherId") == teacher.get("id")
    ]
    for session in sorted(sessions, key=lambda s: s.get("date") or ""):
        cls = _by_id(doc["classes"], session.get("classId"))
        if session.get("teacherRatePerHourSnap") is not None:
            rate = _num(session["teacherRatePerHourSnap"])
        else:
            rate = _num(teacher.get("ratePerHour")) or _num((cls or {}).get("teacherRatePerHour"))
        hours = billable_hours(session, cls)
        pay = rate * hours
        payroll.lines.append(PayrollLine(
            date=session.get("date") or "",
            class_id=session.get("classId"),
            class_name=(cls or {}).get("name") or session.get("classId"),
            hours=hours,
            rate=rate,
            pay=pay,
        ))
        payroll.total_hours += hours
        payroll.total_pay += pay
    return payroll


def payroll(doc: Document, ym: str, teacher_id: Optional[str] = None) -> List[TeacherPayroll]:
    teachers = [t for t in doc["teachers"] if not teacher_id or t.get("id") == teacher_id]
    return [payroll_for_teacher(doc, t, ym) for t in teachers]


def finance_summary(doc: Document, ym: str) -> FinanceSummary:
    summary = FinanceSummary(month=ym)
    for cls in doc["classes"]:
        revenue = revenue_for_detailed(doc, cls, ym)
        cost = cost_for(doc, cls, ym)
        net = revenue - cost
        summary.classes.append(ClassFinance(
            class_id=cls.get("id"),
            class_name=cls.get("name") or cls.get("id"),
            revenue=revenue,
            cost=cost,
            net=net,
            profit_pct=round(net / revenue * 100, 1) if revenue else None,
        ))
        summary.total_revenue += revenue
        summary.total_cost += cost

    extras = (doc["meta"].get("extraExpenses") or {}).get(ym) or []
    summary.extra_expenses = [
        ExtraExpense(name=str(it.get("name") or ""), amount=_num(it.get("amount")))
        for it in extras if isinstance(it, dict)
    ]
    summary.extra_total = sum(it.amount for it in summary.extra_expenses)
    summary.gross_net = summary.total_revenue - summary.total_cost
    summary.net_profit = summary.gross_net - summary.extra_total
    return summary


def attendance_statement(doc: Document, student_id: str, ym: str) -> List[AttendanceEntry]:
    """Per held session of each enrolled class: status and the charge it produces."""
    rows: List[AttendanceEntry] = []
    for enrollment in doc["enrollments"]:
        if enrollment.get("studentId") != student_id:
            continue
        cls = _by_id(doc["classes"], enrollment.get("classId")) or {}
        price = _num(cls.get("priceVnd"))
        for session in held_sessions(doc, enrollment.get("classId"), ym):
            status = resolve_attendance(session, student_id)
            rows.append(AttendanceEntry(
                date=session.get("date") or "",
                class_id=enrollment.get("classId"),
                class_name=cls.get("name") or enrollment.get("classId"),
                status=status,
                charge=0 if status is AttendanceStatus.excused
                else discounted_price(price, enrollment.get("discountPct")),
            ))
    return sorted(rows, key=lambda r: r.date)


def attendance_counts(session: Mapping[str, Any]) -> AttendanceCounts:
    counts = AttendanceCounts()
    for value in (session.get("attendance") or {}).values():
        if value == "excused":
            counts.excused += 1
        elif value == "absent":
            counts.absent += 1
        else:
            counts.present += 1
    return counts


def document_summary(doc: Document) -> Dict[str, Any]:
    return {
        "totalStudents": len(doc["students"]),
        "enrolledStudents": len({e.get("studentId") for e in doc["enrollments"]}),
        "teachers": len(doc["teachers"]),
        "adminNotes": doc["meta"].get("adminNotes") or "",
    }
