import logging
import os
from datetime import date
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, Response
from pydantic import EmailStr, Field

import billing
import exports
from config import AppSettings
from database import DocumentFormatError, dump_document, import_document, load_store
from normalizer import empty_document
from schemas import (
    AttendanceStatus,
    DocumentModel,
    Enrollment as EnrollmentSchema,
    Session as SessionSchema,
    SessionStatus,
    Student as StudentSchema,
    Teacher as TeacherSchema,
    TuitionClass as TuitionClassSchema,
    whole_amount,
)
from store import TuitionStore

logger = logging.getLogger(__name__)

app = FastAPI(title="Tuition Manager API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_store: Optional[TuitionStore] = None


def get_store() -> TuitionStore:
    global _store
    if _store is None:
        _store = load_store(AppSettings())
    return _store


def current_month() -> str:
    return date.today().isoformat()[:7]


def month_query(month: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}$")) -> str:
    return month or current_month()


def _name_filter(items: List[dict], q: Optional[str]) -> List[dict]:
    if not q:
        return items
    q = q.lower()
    return [it for it in items if q in str(it.get("name") or "").lower()]


def _payload(model: DocumentModel) -> dict:
    return model.model_dump(by_alias=True, exclude_unset=True)


@app.get("/")
def root():
    return {"message": "Tuition Manager API running"}


# ---------- Students ----------
class StudentCreate(DocumentModel):
    name: str
    student_id: Optional[str] = None
    status: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    parent_name: Optional[str] = None
    parent_phone: Optional[str] = None
    note: Optional[str] = None


class StudentUpdate(DocumentModel):
    name: Optional[str] = None
    student_id: Optional[str] = None
    status: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    parent_name: Optional[str] = None
    parent_phone: Optional[str] = None
    note: Optional[str] = None


@app.post("/students")
def create_student(payload: StudentCreate, store: TuitionStore = Depends(get_store)):
    return store.add_student(_payload(payload))


@app.get("/students")
def list_students(q: Optional[str] = None, store: TuitionStore = Depends(get_store)):
    return {"items": _name_filter(store.data["students"], q)}


@app.get("/students/{student_id}")
def get_student(student_id: str, store: TuitionStore = Depends(get_store)):
    student = store.student_by_id(student_id)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    return student


@app.patch("/students/{student_id}")
def update_student(student_id: str, patch: StudentUpdate, store: TuitionStore = Depends(get_store)):
    student = store.update_student(student_id, _payload(patch))
    if student is None:
        raise HTTPException(status_code=404, detail="Student not found")
    return student


@app.delete("/students/{student_id}")
def delete_student(student_id: str, store: TuitionStore = Depends(get_store)):
    if not store.delete_student(student_id):
        raise HTTPException(status_code=404, detail="Student not found")
    return {"deleted": student_id}


class StudentClasses(DocumentModel):
    classes: Dict[str, float] = Field(default_factory=dict, description="class id -> discount %")


@app.put("/students/{student_id}/classes")
def set_student_classes(student_id: str, payload: StudentClasses, store: TuitionStore = Depends(get_store)):
    if not store.student_by_id(student_id):
        raise HTTPException(status_code=404, detail="Student not found")
    missing = [cid for cid in payload.classes if not store.class_by_id(cid)]
    if missing:
        raise HTTPException(status_code=404, detail=f"Class not found: {', '.join(missing)}")
    return {"items": store.set_student_classes(student_id, payload.classes)}


# ---------- Classes ----------
class ClassCreate(DocumentModel):
    name: str
    price_vnd: Optional[int] = None
    default_duration_hrs: Optional[float] = None
    teacher_id: Optional[str] = None
    capacity: Optional[int] = None
    level: Optional[str] = None
    notes: Optional[str] = None


class ClassUpdate(DocumentModel):
    name: Optional[str] = None
    price_vnd: Optional[int] = None
    default_duration_hrs: Optional[float] = None
    teacher_rate_per_hour: Optional[float] = None
    capacity: Optional[int] = None
    level: Optional[str] = None
    notes: Optional[str] = None


@app.post("/classes")
def create_class(payload: ClassCreate, store: TuitionStore = Depends(get_store)):
    data = _payload(payload)
    teacher_id = data.pop("teacherId", None)
    if teacher_id and not store.teacher_by_id(teacher_id):
        raise HTTPException(status_code=404, detail="Teacher not found")
    cls = store.add_class(data)
    if teacher_id:
        cls = store.set_class_teacher(cls["id"], teacher_id)
    return cls


@app.get("/classes")
def list_classes(q: Optional[str] = None, store: TuitionStore = Depends(get_store)):
    return {"items": _name_filter(store.data["classes"], q)}


@app.get("/classes/{class_id}")
def get_class(class_id: str, store: TuitionStore = Depends(get_store)):
    cls = store.class_by_id(class_id)
    if not cls:
        raise HTTPException(status_code=404, detail="Class not found")
    return cls | {"roster": store.roster_for_class(class_id)}


@app.patch("/classes/{class_id}")
def update_class(class_id: str, patch: ClassUpdate, store: TuitionStore = Depends(get_store)):
    cls = store.update_class(class_id, _payload(patch))
    if cls is None:
        raise HTTPException(status_code=404, detail="Class not found")
    return cls


@app.delete("/classes/{class_id}")
def delete_class(class_id: str, store: TuitionStore = Depends(get_store)):
    if not store.delete_class(class_id):
        raise HTTPException(status_code=404, detail="Class not found")
    return {"deleted": class_id}


class ClassTeacher(DocumentModel):
    teacher_id: Optional[str] = None


@app.put("/classes/{class_id}/teacher")
def assign_teacher(class_id: str, payload: ClassTeacher, store: TuitionStore = Depends(get_store)):
    if payload.teacher_id and not store.teacher_by_id(payload.teacher_id):
        raise HTTPException(status_code=404, detail="Teacher not found")
    cls = store.set_class_teacher(class_id, payload.teacher_id)
    if cls is None:
        raise HTTPException(status_code=404, detail="Class not found")
    return cls


class NoteUpdate(DocumentModel):
    text: str = ""


@app.put("/classes/{class_id}/notes/{ym}")
def set_month_note(class_id: str, ym: str, payload: NoteUpdate, store: TuitionStore = Depends(get_store)):
    cls = store.set_month_note(class_id, ym[:7], payload.text)
    if cls is None:
        raise HTTPException(status_code=404, detail="Class not found")
    return {"classId": class_id, "month": ym[:7], "text": cls["monthNotes"][ym[:7]]}


# ---------- Teachers ----------
class TeacherCreate(DocumentModel):
    name: str
    rate_per_hour: Optional[float] = None
    subjects: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None


class TeacherUpdate(DocumentModel):
    name: Optional[str] = None
    rate_per_hour: Optional[float] = None
    subjects: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None


@app.post("/teachers")
def create_teacher(payload: TeacherCreate, store: TuitionStore = Depends(get_store)):
    return store.add_teacher(_payload(payload))


@app.get("/teachers")
def list_teachers(q: Optional[str] = None, store: TuitionStore = Depends(get_store)):
    return {"items": _name_filter(store.data["teachers"], q)}


@app.get("/teachers/{teacher_id}")
def get_teacher(teacher_id: str, store: TuitionStore = Depends(get_store)):
    teacher = store.teacher_by_id(teacher_id)
    if not teacher:
        raise HTTPException(status_code=404, detail="Teacher not found")
    return teacher


@app.patch("/teachers/{teacher_id}")
def update_teacher(teacher_id: str, patch: TeacherUpdate, store: TuitionStore = Depends(get_store)):
    teacher = store.update_teacher(teacher_id, _payload(patch))
    if teacher is None:
        raise HTTPException(status_code=404, detail="Teacher not found")
    return teacher


@app.delete("/teachers/{teacher_id}")
def delete_teacher(teacher_id: str, store: TuitionStore = Depends(get_store)):
    if not store.delete_teacher(teacher_id):
        raise HTTPException(status_code=404, detail="Teacher not found")
    return {"deleted": teacher_id}


# ---------- Enrollments ----------
class EnrollmentCreate(DocumentModel):
    student_id: str
    class_id: str
    discount_pct: Optional[float] = None
    enrolled_at: Optional[date] = None
    notes: Optional[str] = None


@app.post("/enrollments")
def create_enrollment(payload: EnrollmentCreate, store: TuitionStore = Depends(get_store)):
    if not store.student_by_id(payload.student_id):
        raise HTTPException(status_code=404, detail="Student not found")
    if not store.class_by_id(payload.class_id):
        raise HTTPException(status_code=404, detail="Class not found")
    return store.enroll(
        payload.student_id,
        payload.class_id,
        discount_pct=payload.discount_pct,
        enrolled_at=payload.enrolled_at.isoformat() if payload.enrolled_at else None,
        notes=payload.notes,
    )


@app.get("/enrollments")
def list_enrollments(student_id: Optional[str] = None, class_id: Optional[str] = None,
                     store: TuitionStore = Depends(get_store)):
    return {"items": store.enrollments_for(student_id=student_id, class_id=class_id)}


# ---------- Sessions ----------
class SessionSave(DocumentModel):
    status: SessionStatus = "held"
    duration_hrs: float = 1
    teacher_id: Optional[str] = None
    note: str = ""


class AttendanceUpdate(DocumentModel):
    status: AttendanceStatus


def _require_class(store: TuitionStore, class_id: str) -> dict:
    cls = store.class_by_id(class_id)
    if not cls:
        raise HTTPException(status_code=404, detail="Class not found")
    return cls


@app.get("/sessions")
def list_sessions(class_id: Optional[str] = None, month: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}$"),
                  store: TuitionStore = Depends(get_store)):
    items = store.sessions(class_id=class_id, ym=month)
    return {"items": [s | {"counts": billing.attendance_counts(s).model_dump()} for s in items]}


@app.get("/sessions/{class_id}/{ymd}")
def get_session(class_id: str, ymd: str, store: TuitionStore = Depends(get_store)):
    session = store.session_for(class_id, ymd[:10])
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session | {"counts": billing.attendance_counts(session).model_dump()}


@app.put("/sessions/{class_id}/{ymd}")
def save_session(class_id: str, ymd: str, payload: SessionSave, store: TuitionStore = Depends(get_store)):
    _require_class(store, class_id)
    if payload.teacher_id and not store.teacher_by_id(payload.teacher_id):
        raise HTTPException(status_code=404, detail="Teacher not found")
    return store.save_session(
        class_id,
        ymd[:10],
        status=payload.status,
        duration_hrs=payload.duration_hrs,
        teacher_id=payload.teacher_id,
        note=payload.note,
    )


@app.delete("/sessions/{class_id}/{ymd}")
def clear_session(class_id: str, ymd: str, store: TuitionStore = Depends(get_store)):
    if not store.clear_session(class_id, ymd[:10]):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"cleared": True}


@app.post("/sessions/{class_id}/{ymd}/toggle-held")
def toggle_held(class_id: str, ymd: str, store: TuitionStore = Depends(get_store)):
    _require_class(store, class_id)
    return {"session": store.toggle_held(class_id, ymd[:10])}


@app.post("/sessions/{class_id}/{ymd}/toggle-cancelled")
def toggle_cancelled(class_id: str, ymd: str, store: TuitionStore = Depends(get_store)):
    _require_class(store, class_id)
    return {"session": store.toggle_cancelled(class_id, ymd[:10])}


@app.put("/sessions/{class_id}/{ymd}/attendance/{student_id}")
def set_attendance(class_id: str, ymd: str, student_id: str, payload: AttendanceUpdate,
                   store: TuitionStore = Depends(get_store)):
    session = store.set_attendance(class_id, ymd[:10], student_id, payload.status)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


# ---------- Billing ----------
def _csv_response(content: str, filename: str) -> Response:
    return Response(content, media_type="text/csv",
                    headers={"Content-Disposition": f'attachment; filename="{filename}"'})


@app.get("/billing/classes/{class_id}")
def class_billing(class_id: str, month: str = Depends(month_query), store: TuitionStore = Depends(get_store)):
    cls = _require_class(store, class_id)
    revenue = billing.revenue_for_detailed(store.data, cls, month)
    cost = billing.cost_for(store.data, cls, month)
    return {
        "classId": class_id,
        "month": month,
        "revenue": whole_amount(revenue),
        "revenueSimple": whole_amount(billing.revenue_for(store.data, cls, month)),
        "cost": whole_amount(cost),
        "net": whole_amount(revenue - cost),
    }


@app.get("/billing/students/{student_id}/invoice")
def student_invoice(student_id: str, month: str = Depends(month_query), format: str = "json",
                    store: TuitionStore = Depends(get_store)):
    student = store.student_by_id(student_id)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    invoice = billing.invoice_for_student(store.data, student_id, month)
    if format == "csv":
        return _csv_response(exports.invoice_csv(invoice), f"tuition_{student_id}_{month}.csv")
    if format == "html":
        return HTMLResponse(exports.invoice_html(student, invoice))
    return invoice.model_dump(by_alias=True)


@app.get("/billing/students/{student_id}/attendance")
def student_attendance(student_id: str, month: str = Depends(month_query), store: TuitionStore = Depends(get_store)):
    if not store.student_by_id(student_id):
        raise HTTPException(status_code=404, detail="Student not found")
    rows = billing.attendance_statement(store.data, student_id, month)
    return {"items": [r.model_dump(by_alias=True) for r in rows]}


@app.get("/billing/payroll")
def payroll(month: str = Depends(month_query), teacher_id: Optional[str] = None, format: str = "json",
            store: TuitionStore = Depends(get_store)):
    if teacher_id and not store.teacher_by_id(teacher_id):
        raise HTTPException(status_code=404, detail="Teacher not found")
    payrolls = billing.payroll(store.data, month, teacher_id=teacher_id)
    if format == "csv":
        return _csv_response(exports.payroll_csv(payrolls), f"payroll_{month}.csv")
    return {"items": [p.model_dump(by_alias=True) for p in payrolls]}


@app.get("/billing/finance")
def finance(month: str = Depends(month_query), store: TuitionStore = Depends(get_store)):
    return billing.finance_summary(store.data, month).model_dump(by_alias=True)


@app.get("/billing/summary")
def summary(store: TuitionStore = Depends(get_store)):
    return billing.document_summary(store.data)


# ---------- Meta ----------
class ExpenseCreate(DocumentModel):
    name: str
    amount: float = 0


@app.get("/meta/admin-notes")
def get_admin_notes(store: TuitionStore = Depends(get_store)):
    return {"text": store.data["meta"].get("adminNotes") or ""}


@app.put("/meta/admin-notes")
def set_admin_notes(payload: NoteUpdate, store: TuitionStore = Depends(get_store)):
    return {"text": store.set_admin_notes(payload.text)}


@app.get("/meta/expenses/{ym}")
def list_expenses(ym: str, store: TuitionStore = Depends(get_store)):
    return {"items": store.extra_expenses(ym[:7])}


@app.post("/meta/expenses/{ym}")
def add_expense(ym: str, payload: ExpenseCreate, store: TuitionStore = Depends(get_store)):
    return {"items": store.add_extra_expense(ym[:7], payload.name.strip(), payload.amount)}


# ---------- Import / export ----------
@app.get("/data/export")
def export_data(store: TuitionStore = Depends(get_store)):
    return Response(dump_document(store.data), media_type="application/json",
                    headers={"Content-Disposition": 'attachment; filename="students_data.json"'})


@app.post("/data/import")
def import_data(file: UploadFile = File(...), store: TuitionStore = Depends(get_store)):
    content = file.file.read()
    try:
        doc = import_document(store, content.decode("utf-8-sig"))
    except (DocumentFormatError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="This file is not valid JSON.")
    return billing.document_summary(doc)


@app.post("/data/new")
def new_data(store: TuitionStore = Depends(get_store)):
    store.replace_document(empty_document(), source="new")
    return billing.document_summary(store.data)


# ---------- Utilities ----------
@app.get("/schema")
def get_schema():
    models = [StudentSchema, TuitionClassSchema, TeacherSchema, EnrollmentSchema, SessionSchema]
    return {m.__name__: m.model_json_schema(by_alias=True) for m in models}


@app.get("/test")
def test_database(store: TuitionStore = Depends(get_store)):
    response = {
        "backend": "✅ Running",
        "storage": "❌ Not Available",
        "storage_info": None,
        "counts": {},
    }

    try:
        if store.storage is not None:
            response["storage"] = "✅ Available"
            response["storage_info"] = store.storage.describe()
        else:
            response["storage"] = "⚠️  In-memory only"
        response["counts"] = {name: len(items) for name, items in store.data.items() if name != "meta"}
    except Exception as e:
        response["storage"] = f"❌ Error: {str(e)[:50]}"

    return response


if __name__ == "__main__":
    import uvicorn
    settings = AppSettings()
    logging.basicConfig(level=settings.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    port = int(os.getenv("PORT", settings.port))
    uvicorn.run(app, host="0.0.0.0", port=port)
