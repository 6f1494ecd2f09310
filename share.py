"""Receipt and khata texts for WhatsApp sharing and printing."""

from urllib.parse import quote

from billing import format_amount, format_plain_amount, format_quantity
from schemas import Bill, Ledger

RULE = "-" * 26
PRINT_WIDTH = 32


def whatsapp_link(mobile: str, text: str) -> str:
    return f"https://wa.me/{mobile}?text={quote(text, safe='')}"


def receipt_text(bill: Bill, shop_name: str) -> str:
    lines = [
        f"*{shop_name}*",
        f"Bill #: {bill.bill_number}",
        f"Customer: {bill.customer_name}",
        RULE,
    ]
    for it in bill.items:
        lines.append(f"{it.name}: {format_quantity(it.quantity, it.unit)} = ₹{format_amount(it.calculated_price)}")
    lines += [
        RULE,
        f"*TOTAL: ₹{format_amount(bill.total_amount)}*",
        f"Paid: ₹{format_plain_amount(bill.paid_amount)} | Due: ₹{format_plain_amount(bill.due_amount)}",
        "",
        "Dhanyawad! Phir aaiyega!",
    ]
    return "\n".join(lines)


def khata_statement_text(ledger: Ledger, shop_name: str) -> str:
    return "\n".join([
        f"*{shop_name} - Customer Khata Statement*",
        f"Grahak: {ledger.customer.name}",
        f"Mobile: {ledger.customer.mobile}",
        RULE,
        f"Total Kharidari: ₹{format_amount(ledger.total_sale)}",
        f"Total Paid: ₹{format_amount(ledger.total_paid)}",
        f"*TOTAL DUES: ₹{format_amount(ledger.total_due)}*",
        RULE,
        "Namaste, ye aapka complete khata detail hai.",
    ])


def _row(left: str, right: str) -> str:
    gap = max(1, PRINT_WIDTH - len(left) - len(right))
    return f"{left}{' ' * gap}{right}"


def printable_receipt(bill: Bill, shop_name: str) -> str:
    """Fixed-width receipt for thermal or plain printers."""
    dashed = "-" * PRINT_WIDTH
    out = [
        shop_name.upper().center(PRINT_WIDTH),
        "Smart Khata & Billing".center(PRINT_WIDTH),
        dashed,
        f"BILL NO: {bill.bill_number}",
        f"{bill.date} | {bill.time}",
        dashed,
        "Customer:",
        _row(bill.customer_name, bill.status.upper()),
        bill.customer_mobile,
        dashed,
        _row("ITEM", "SUBTOTAL"),
    ]
    for it in bill.items:
        out.append(_row(it.name, f"₹{format_amount(it.calculated_price)}"))
        out.append(f"  {format_quantity(it.quantity, it.unit)} @ ₹{format_plain_amount(it.base_price)}/{it.unit}")
    out += [
        dashed,
        _row("GRAND TOTAL", f"₹{format_amount(bill.total_amount)}"),
        _row("Paid Amount", f"₹{format_plain_amount(bill.paid_amount)}"),
        _row("Total Dues", f"₹{format_plain_amount(bill.due_amount)}"),
        dashed,
        "Dhanyawad! Phir Aaiyega!".center(PRINT_WIDTH),
    ]
    return "\n".join(out) + "\n"


def printable_ledger(ledger: Ledger, shop_name: str) -> str:
    dashed = "-" * PRINT_WIDTH
    out = [
        shop_name.upper().center(PRINT_WIDTH),
        "Khata Statement".center(PRINT_WIDTH),
        dashed,
        ledger.customer.name,
        ledger.customer.mobile,
        dashed,
        _row("Total Sales", f"₹{format_amount(ledger.total_sale)}"),
        _row("Total Paid", f"₹{format_amount(ledger.total_paid)}"),
        _row("Total Due (Udhaar)", f"₹{format_amount(ledger.total_due)}"),
        dashed,
    ]
    if not ledger.bills:
        out.append("Abhi tak koi kharidari nahi hui.")
    for bill in ledger.bills:
        out.append(_row(f"Bill #{bill.bill_number}", f"₹{bill.total_amount:.0f}"))
        out.append(f"  {bill.date} {bill.time}  {bill.status}")
    return "\n".join(out) + "\n"
