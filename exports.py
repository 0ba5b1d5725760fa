"""CSV and printable renderings of invoices and payroll."""

import csv
import io
from html import escape
from typing import Any, Iterable, Mapping, Optional

from schemas import Invoice, TeacherPayroll, whole_amount


def format_vnd(n: Any) -> str:
    try:
        value = float(n or 0)
    except (TypeError, ValueError):
        value = 0
    return f"{value:,.0f}"


def invoice_csv(invoice: Invoice) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["Class", "Amount (VND)"])
    for item in invoice.items:
        writer.writerow([item.class_name or item.class_id, whole_amount(item.amount)])
    writer.writerow(["Total", whole_amount(invoice.total)])
    return buf.getvalue()


def payroll_csv(payrolls: Iterable[TeacherPayroll]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["Teacher", "Date", "Class", "Hours", "Rate (VND/hr)", "Pay (VND)"])
    for payroll in payrolls:
        for line in payroll.lines:
            writer.writerow([
                payroll.teacher_name,
                line.date,
                line.class_name or line.class_id,
                f"{line.hours:.2f}",
                whole_amount(line.rate),
                whole_amount(line.pay),
            ])
        writer.writerow([payroll.teacher_name, "Total", "", f"{payroll.total_hours:.2f}", "", whole_amount(payroll.total_pay)])
    return buf.getvalue()


def invoice_html(student: Optional[Mapping[str, Any]], invoice: Invoice) -> str:
    name = (student or {}).get("name") or invoice.student_id
    rows = "".join(
        f'<tr><td>{escape(str(it.class_name or it.class_id))}</td>'
        f'<td class="text-end">{format_vnd(it.amount)}</td></tr>'
        for it in invoice.items
    ) or '<tr><td colspan="2" class="text-muted">No charges.</td></tr>'
    return (
        "<html><head><title>Invoice</title>"
        "<style>body{margin:20px;} .table{width:100%;font-size:12px;} th,td{padding:4px;} "
        ".text-end{text-align:right;}</style>"
        "</head><body>"
        f"<h5>Invoice for {escape(str(name))}</h5>"
        f"<p>Month: {escape(invoice.month)}</p>"
        '<table class="table invoice-table">'
        '<thead><tr><th>Class</th><th class="text-end">Amount (VND)</th></tr></thead>'
        f"<tbody>{rows}</tbody>"
        f'<tfoot><tr><th>Total</th><th class="text-end">{format_vnd(invoice.total)}</th></tr></tfoot>'
        "</table></body></html>"
    )
