import billing
from normalizer import normalize
from schemas import AttendanceStatus
from store import TuitionStore


def _doc(**collections):
    return TuitionStore(collections).data


CLASS = {"id": "CLS-000001", "name": "IELTS", "priceVnd": 500000, "defaultDurationHrs": 1.5,
         "teacherRatePerHour": 150000}


def _session(date, status="held", **extra):
    return {"id": f"SES-{date}", "classId": "CLS-000001", "date": date, "status": status} | extra


def _enrollment(student_id, discount=0, class_id="CLS-000001"):
    return {"id": f"ENR-{student_id}-{class_id}", "studentId": student_id, "classId": class_id,
            "discountPct": discount, "enrolledAt": "2024-05-01", "notes": ""}


def test_detailed_revenue_applies_each_discount(priced_class, store):
    assert billing.revenue_for_detailed(store.data, priced_class["class"], "2024-05") == 950000


def test_detailed_revenue_skips_excused_students_only():
    doc = _doc(
        classes=[dict(CLASS)],
        enrollments=[_enrollment("STU-1"), _enrollment("STU-2")],
        sessions=[_session("2024-05-06", attendance={}),
                  _session("2024-05-13", attendance={"STU-2": "excused"})],
    )
    # first session bills both, second bills STU-1 only
    assert billing.revenue_for_detailed(doc, doc["classes"][0], "2024-05") == 1500000


def test_absent_and_legacy_unlisted_students_are_billed():
    doc = _doc(
        classes=[dict(CLASS)],
        enrollments=[_enrollment("STU-1"), _enrollment("STU-2")],
        sessions=[_session("2024-05-06", present=["STU-1"]),
                  _session("2024-05-13", attendance={"STU-1": "absent"})],
    )
    assert billing.revenue_for_detailed(doc, doc["classes"][0], "2024-05") == 2000000


def test_only_held_sessions_in_the_month_count():
    doc = _doc(
        classes=[dict(CLASS)],
        enrollments=[_enrollment("STU-1")],
        sessions=[_session("2024-05-06"), _session("2024-05-13", status="cancelled"),
                  _session("2024-06-03"), _session("2024-05-20", status="planned")],
    )
    cls = doc["classes"][0]
    assert billing.revenue_for_detailed(doc, cls, "2024-05") == 500000
    assert billing.revenue_for(doc, cls, "2024-05") == 500000
    assert len(billing.sessions_for(doc, cls["id"], "2024-05")) == 3


def test_revenue_is_never_negative_for_non_negative_prices():
    doc = _doc(
        classes=[dict(CLASS, priceVnd=0), dict(CLASS, id="CLS-000002", priceVnd=120000)],
        enrollments=[_enrollment("STU-1", 100), _enrollment("STU-2", 35, "CLS-000002")],
        sessions=[_session("2024-05-06"), dict(_session("2024-05-06"), classId="CLS-000002")],
    )
    for cls in doc["classes"]:
        assert billing.revenue_for_detailed(doc, cls, "2024-05") >= 0


def test_coarse_revenue_ignores_discounts_and_attendance():
    doc = _doc(
        classes=[dict(CLASS)],
        enrollments=[_enrollment("STU-1", 50), _enrollment("STU-2")],
        sessions=[_session("2024-05-06", attendance={"STU-2": "excused"}), _session("2024-05-13")],
    )
    cls = doc["classes"][0]
    assert billing.revenue_for(doc, cls, "2024-05") == 500000 * 2 * 2
    assert billing.revenue_for_detailed(doc, cls, "2024-05") == 250000 * 2 + 500000


def test_invoice_uses_first_enrollment_per_class():
    doc = _doc(
        classes=[dict(CLASS), {"id": "CLS-000002", "name": "", "priceVnd": 200000}],
        enrollments=[_enrollment("STU-1", 10), dict(_enrollment("STU-1", 50), id="ENR-dup"),
                     _enrollment("STU-1", 0, "CLS-000002"), _enrollment("STU-2")],
        sessions=[_session("2024-05-06"), _session("2024-05-13", attendance={"STU-1": "excused"}),
                  dict(_session("2024-05-07"), classId="CLS-000002")],
    )
    invoice = billing.invoice_for_student(doc, "STU-1", "2024-05")
    assert [(it.class_id, it.class_name, it.amount) for it in invoice.items] == [
        ("CLS-000001", "IELTS", 450000),
        ("CLS-000002", "CLS-000002", 200000),
    ]
    assert invoice.total == 650000


def test_invoice_for_student_without_enrollments_is_empty():
    invoice = billing.invoice_for_student(_doc(), "STU-1", "2024-05")
    assert invoice.items == [] and invoice.total == 0


def test_cost_is_floored_to_class_default_duration():
    doc = _doc(
        classes=[dict(CLASS, teacherRatePerHour=0)],
        teachers=[{"id": "TEA-000001", "name": "Lan", "ratePerHour": 200000}],
        sessions=[_session("2024-05-06", durationHrs=1, teacherId="TEA-000001")],
    )
    assert billing.cost_for(doc, doc["classes"][0], "2024-05") == 300000


def test_cost_never_pays_below_default_even_for_zero_hours():
    doc = _doc(
        classes=[dict(CLASS)],
        sessions=[_session("2024-05-06", durationHrs=0), _session("2024-05-13", durationHrs=2)],
    )
    assert billing.cost_for(doc, doc["classes"][0], "2024-05") == 150000 * 1.5 + 150000 * 2


def test_cost_rate_resolution():
    doc = _doc(
        classes=[dict(CLASS)],
        teachers=[{"id": "TEA-000001", "ratePerHour": 200000}, {"id": "TEA-000002"}],
        sessions=[
            _session("2024-05-01", durationHrs=1.5, teacherRatePerHourSnap=100000, teacherId="TEA-000001"),
            _session("2024-05-02", durationHrs=1.5, teacherId="TEA-000001"),
            _session("2024-05-03", durationHrs=1.5, teacherId="TEA-000002"),
            _session("2024-05-04", durationHrs=1.5, teacherId="TEA-000404"),
            _session("2024-05-05", durationHrs=1.5),
        ],
    )
    expected = 1.5 * (100000 + 200000 + 150000 + 150000 + 150000)
    assert billing.cost_for(doc, doc["classes"][0], "2024-05") == expected


def test_net_is_revenue_minus_cost(priced_class, store):
    cls = priced_class["class"]
    assert billing.cost_for(store.data, cls, "2024-05") == 300000
    assert billing.net_for(store.data, cls, "2024-05") == 650000


def test_resolve_attendance():
    session = {"attendance": {"STU-1": "excused", "STU-2": "absent", "STU-3": "late"}}
    assert billing.resolve_attendance(session, "STU-1") is AttendanceStatus.excused
    assert billing.resolve_attendance(session, "STU-2") is AttendanceStatus.absent
    assert billing.resolve_attendance(session, "STU-3") is AttendanceStatus.present
    assert billing.resolve_attendance(session, "STU-4") is AttendanceStatus.present
    assert billing.resolve_attendance({}, "STU-1") is AttendanceStatus.present


def test_payroll_for_teacher():
    doc = _doc(
        classes=[dict(CLASS)],
        teachers=[{"id": "TEA-000001", "name": "Lan", "ratePerHour": 200000, "email": "lan@example.com"}],
        sessions=[
            _session("2024-05-13", durationHrs=2, teacherId="TEA-000001"),
            _session("2024-05-06", durationHrs=1, teacherId="TEA-000001", teacherRatePerHourSnap=180000),
            _session("2024-05-20", status="cancelled", teacherId="TEA-000001"),
            _session("2024-05-27", teacherId="TEA-000002"),
        ],
    )
    (payroll,) = billing.payroll(doc, "2024-05")
    assert payroll.teacher_name == "Lan"
    assert [(l.date, l.hours, l.rate, l.pay) for l in payroll.lines] == [
        ("2024-05-06", 1.5, 180000, 270000),
        ("2024-05-13", 2, 200000, 400000),
    ]
    assert payroll.total_hours == 3.5
    assert payroll.total_pay == 670000
    assert billing.payroll(doc, "2024-05", teacher_id="TEA-000404") == []


def test_finance_summary_with_extra_expenses(priced_class, store):
    store.add_extra_expense("2024-05", "Rent", 100000)
    store.add_class({"name": "Empty"})
    summary = billing.finance_summary(store.data, "2024-05")
    assert summary.total_revenue == 950000
    assert summary.total_cost == 300000
    assert summary.gross_net == 650000
    assert summary.extra_total == 100000
    assert summary.net_profit == 550000
    assert summary.classes[0].profit_pct == round(650000 / 950000 * 100, 1)
    assert summary.classes[1].profit_pct is None


def test_attendance_statement(priced_class, store):
    cls = priced_class["class"]
    an, binh = priced_class["students"]
    store.toggle_held(cls["id"], "2024-05-13")
    store.set_attendance(cls["id"], "2024-05-13", binh["id"], "excused")
    rows = billing.attendance_statement(store.data, binh["id"], "2024-05")
    assert [(r.date, r.status, r.charge) for r in rows] == [
        ("2024-05-06", AttendanceStatus.present, 450000),
        ("2024-05-13", AttendanceStatus.excused, 0),
    ]


def test_attendance_counts_and_summary(priced_class, store):
    cls = priced_class["class"]
    an, binh = priced_class["students"]
    store.set_attendance(cls["id"], "2024-05-06", an["id"], "absent")
    store.set_attendance(cls["id"], "2024-05-06", binh["id"], "excused")
    counts = billing.attendance_counts(store.session_for(cls["id"], "2024-05-06"))
    assert (counts.present, counts.excused, counts.absent) == (0, 1, 1)
    store.add_student({"name": "Chi"})
    store.set_admin_notes("hello")
    assert billing.document_summary(store.data) == {
        "totalStudents": 3, "enrolledStudents": 2, "teachers": 1, "adminNotes": "hello",
    }


def test_finance_summary_with_mistyped_expenses_imported():
    store = TuitionStore(normalize({"meta": {"extraExpenses": [{"name": "rent", "amount": 1}]}}))
    summary = billing.finance_summary(store.data, "2024-05")
    assert summary.extra_expenses == []
    assert summary.net_profit == 0


def test_whole_amounts_serialize_as_ints(priced_class, store):
    binh = priced_class["students"][1]
    invoice = billing.invoice_for_student(store.data, binh["id"], "2024-05").model_dump(by_alias=True, mode="json")
    assert invoice["total"] == 450000
    assert isinstance(invoice["total"], int)
    assert isinstance(invoice["items"][0]["amount"], int)

    summary = billing.finance_summary(store.data, "2024-05").model_dump(by_alias=True, mode="json")
    assert [type(summary[k]) for k in ("totalRevenue", "totalCost", "netProfit")] == [int, int, int]
