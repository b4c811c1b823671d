"""
Render a timesheet to PDF: shift header, one row per time entry, per-worker and grand totals, sign-off block.
"""
import io
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from ..services.time_rules import format_local, utc_to_local


MARGIN = 54
ROW_HEIGHT = 16
COLUMNS = (
    ("Worker", 0),
    ("Role", 170),
    ("#", 215),
    ("In", 240),
    ("Out", 330),
    ("Hours", 430),
)


def _fit(c: canvas.Canvas, text: str, font: str, size: int, width: float) -> str:
    text = text or ""
    while text and c.stringWidth(text, font, size) > width:
        text = text[:-1]
    return text


def _signature_line(label: str, signature: Optional[str], signed_at, tz_name: Optional[str]) -> str:
    if not signature:
        return f"{label}: not signed"
    # Drawn signatures arrive as data URLs; only typed names are printed
    shown = "[signature on file]" if signature.startswith("data:") else signature
    when = f" on {format_local(signed_at, tz_name)}" if signed_at else ""
    return f"{label}: {shown}{when}"


def build_timesheet_pdf(timesheet, summary, tz_name: Optional[str] = None) -> bytes:
    """
    Generate PDF bytes for a timesheet.

    Args:
        timesheet: Timesheet row (shift, job and company are read through its relationships)
        summary: TimesheetSummary with per-worker rounded hours
        tz_name: Display timezone; defaults to TZ_DEFAULT
    """
    font_name, font_bold = "Helvetica", "Helvetica-Bold"
    buf = io.BytesIO()
    page_width, page_height = letter
    c = canvas.Canvas(buf, pagesize=letter)

    shift = timesheet.shift
    job = shift.job if shift is not None else None
    company = job.company if job is not None else None

    y = page_height - MARGIN
    c.setFont(font_bold, 16)
    c.drawString(MARGIN, y, "Timesheet")
    y -= 22
    c.setFont(font_name, 10)
    header = [
        f"Client: {company.name if company else '-'}",
        f"Job: {job.name if job else '-'}",
        f"Location: {(shift.location if shift else None) or (job.location if job else None) or '-'}",
        f"Shift: {format_local(shift.start_time, tz_name)} - {format_local(shift.end_time, tz_name)}" if shift else "Shift: -",
        f"Status: {timesheet.status}",
    ]
    for line in header:
        c.drawString(MARGIN, y, line)
        y -= 14

    def draw_column_headers(y_pos: float) -> float:
        c.setFont(font_bold, 9)
        for title, offset in COLUMNS:
            c.drawString(MARGIN + offset, y_pos, title)
        c.setStrokeColor(colors.grey)
        c.line(MARGIN, y_pos - 4, page_width - MARGIN, y_pos - 4)
        c.setFont(font_name, 9)
        return y_pos - ROW_HEIGHT

    y -= 10
    y = draw_column_headers(y)

    for worker in summary.workers:
        for entry in worker.entries:
            if y < MARGIN + 80:
                c.showPage()
                y = draw_column_headers(page_height - MARGIN)
            clock_in = utc_to_local(entry.clock_in, tz_name).strftime("%m/%d %I:%M %p")
            clock_out = utc_to_local(entry.clock_out, tz_name).strftime("%m/%d %I:%M %p") if entry.clock_out else "-"
            c.drawString(MARGIN, y, _fit(c, worker.user_name, font_name, 9, 165))
            c.drawString(MARGIN + 170, y, worker.role_code)
            c.drawString(MARGIN + 215, y, str(entry.entry_number))
            c.drawString(MARGIN + 240, y, clock_in)
            c.drawString(MARGIN + 330, y, clock_out)
            y -= ROW_HEIGHT
        c.setFont(font_bold, 9)
        c.drawString(MARGIN + 330, y, f"{worker.user_name[:24]} total")
        c.drawString(MARGIN + 430, y, f"{worker.total_hours:.2f}")
        c.setFont(font_name, 9)
        y -= ROW_HEIGHT

    y -= 6
    c.setFont(font_bold, 11)
    c.drawString(MARGIN, y, f"Total hours: {summary.total_hours:.2f}")
    y -= 28

    c.setFont(font_name, 10)
    c.drawString(MARGIN, y, _signature_line("Client approval", timesheet.company_signature, timesheet.company_approved_at, tz_name))
    y -= 14
    c.drawString(MARGIN, y, _signature_line("Manager approval", timesheet.manager_signature, timesheet.manager_approved_at, tz_name))

    c.showPage()
    c.save()
    return buf.getvalue()
