import billing
import exports
from schemas import Invoice, InvoiceItem


def test_format_vnd():
    assert exports.format_vnd(1234567) == "1,234,567"
    assert exports.format_vnd(None) == "0"
    assert exports.format_vnd(449999.6) == "450,000"


def test_invoice_csv():
    invoice = Invoice(student_id="STU-000001", month="2024-05", total=650000, items=[
        InvoiceItem(class_id="CLS-000001", class_name="IELTS, evening", amount=450000),
        InvoiceItem(class_id="CLS-000002", class_name="Math", amount=200000.5),
    ])
    assert exports.invoice_csv(invoice).splitlines() == [
        "Class,Amount (VND)",
        '"IELTS, evening",450000',
        "Math,200000.5",
        "Total,650000",
    ]


def test_payroll_csv(priced_class, store):
    store.toggle_held(priced_class["class"]["id"], "2024-05-13")
    csv_text = exports.payroll_csv(billing.payroll(store.data, "2024-05"))
    assert csv_text.splitlines() == [
        "Teacher,Date,Class,Hours,Rate (VND/hr),Pay (VND)",
        "Ms. Lan,2024-05-06,IELTS 6.5,1.50,200000,300000",
        "Ms. Lan,2024-05-13,IELTS 6.5,1.50,200000,300000",
        "Ms. Lan,Total,,3.00,,600000",
    ]


def test_invoice_html_escapes_names():
    invoice = Invoice(student_id="STU-000001", month="2024-05", total=0, items=[
        InvoiceItem(class_id="CLS-000001", class_name="<b>Math</b>", amount=0),
    ])
    html = exports.invoice_html({"name": "An & Binh"}, invoice)
    assert "Invoice for An &amp; Binh" in html
    assert "&lt;b&gt;Math&lt;/b&gt;" in html
    assert "Month: 2024-05" in html


def test_invoice_html_without_items():
    html = exports.invoice_html(None, Invoice(student_id="STU-000001", month="2024-05"))
    assert "Invoice for STU-000001" in html
    assert "No charges." in html
