"""
Schemas for the Tuition Manager document

The whole data set is one JSON document:
- students, classes, teachers, enrollments, sessions -> lists of records
- meta -> id sequence counters, admin notes, extra expenses

Records are kept as plain dicts inside the store so that unknown fields
survive a round trip. The models below describe their canonical shape,
validate API payloads and type the billing projections. Attribute names are
snake_case; the persisted names are camelCase aliases.
"""

from enum import Enum
from typing import Annotated, Dict, List, Optional, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, PlainSerializer
from pydantic.alias_generators import to_camel


class AttendanceStatus(str, Enum):
    present = "present"
    excused = "excused"
    absent = "absent"


SessionStatus = Literal["held", "cancelled"]


def whole_amount(value: float):
    """VND amounts are whole numbers; keep fractions only when there are some."""
    return int(value) if float(value).is_integer() else value


# billing results are computed as floats and serialized through whole_amount
Money = Annotated[float, PlainSerializer(whole_amount)]


class DocumentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Entities
class Student(DocumentModel):
    id: str = Field(..., description="System-assigned id, e.g. STU-000001")
    student_id: Optional[str] = Field(None, description="Display code, defaults to id")
    name: str = Field("", description="Full name")
    status: str = Field("active", description="active or free text")
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    parent_name: Optional[str] = None
    parent_phone: Optional[str] = None
    note: str = ""


class TuitionClass(DocumentModel):
    id: str = Field(..., description="System-assigned id, e.g. CLS-000001")
    name: str = Field("", description="Class name")
    price_vnd: int = Field(0, description="Charge per held session")
    default_duration_hrs: float = Field(1, description="Standard session length")
    teacher_id: Optional[str] = None
    teacher_name: Optional[str] = Field(None, description="Snapshot of the assigned teacher's name")
    teacher_rate_per_hour: float = Field(0, description="Rate copied from the teacher at assignment")
    capacity: Optional[int] = None
    level: Optional[str] = None
    notes: str = ""
    month_notes: Dict[str, str] = Field(default_factory=dict, description="YYYY-MM -> note")


class Teacher(DocumentModel):
    id: str = Field(..., description="System-assigned id, e.g. TEA-000001")
    name: str = ""
    rate_per_hour: float = Field(0, description="Live hourly rate")
    subjects: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None


class Enrollment(DocumentModel):
    id: str
    student_id: str
    class_id: str
    discount_pct: float = Field(0, description="Personal discount, 0-100")
    enrolled_at: str = Field(..., description="YYYY-MM-DD")
    notes: str = ""


class Session(DocumentModel):
    id: str
    class_id: str
    date: str = Field(..., description="YYYY-MM-DD")
    status: SessionStatus = "held"
    duration_hrs: float = 1
    teacher_id: Optional[str] = None
    teacher_name: Optional[str] = None
    teacher_rate_per_hour_snap: Optional[float] = Field(
        None, description="Rate frozen at save time, preferred over the live rate"
    )
    note: str = ""
    attendance: Dict[str, AttendanceStatus] = Field(default_factory=dict)


class ExtraExpense(BaseModel):
    name: str
    amount: Money = 0


# Billing projections
class InvoiceItem(DocumentModel):
    class_id: Optional[str] = None
    class_name: Optional[str] = None
    amount: Money


class Invoice(DocumentModel):
    student_id: str
    month: str
    total: Money = 0
    items: List[InvoiceItem] = Field(default_factory=list)


class PayrollLine(DocumentModel):
    date: str
    class_id: Optional[str] = None
    class_name: Optional[str] = None
    hours: float
    rate: Money
    pay: Money


class TeacherPayroll(DocumentModel):
    teacher_id: str
    teacher_name: str
    email: Optional[str] = None
    month: str
    lines: List[PayrollLine] = Field(default_factory=list)
    total_hours: float = 0
    total_pay: Money = 0


class ClassFinance(DocumentModel):
    class_id: str
    class_name: str
    revenue: Money
    cost: Money
    net: Money
    profit_pct: Optional[float] = Field(None, description="None when there is no revenue")


class FinanceSummary(DocumentModel):
    month: str
    classes: List[ClassFinance] = Field(default_factory=list)
    total_revenue: Money = 0
    total_cost: Money = 0
    gross_net: Money = 0
    extra_expenses: List[ExtraExpense] = Field(default_factory=list)
    extra_total: Money = 0
    net_profit: Money = 0


class AttendanceEntry(DocumentModel):
    date: str
    class_id: Optional[str] = None
    class_name: Optional[str] = None
    status: AttendanceStatus
    charge: Money


class AttendanceCounts(BaseModel):
    present: int = 0
    excused: int = 0
    absent: int = 0
