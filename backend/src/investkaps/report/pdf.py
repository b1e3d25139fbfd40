"""Recommendation PDF report (reportlab, A4, continues onto new pages)"""

from dataclasses import dataclass
from datetime import date
from io import BytesIO

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

DEFAULT_DISCLAIMER = (
    "This report is for informational purposes only and should not be considered "
    "as financial advice. Investment in securities market are subject to market "
    "risks. Please read all the related documents carefully before investing. Past "
    "performance is not indicative of future returns. Please consider your specific "
    "investment requirements, risk tolerance, goal, time frame, risk and reward "
    "balance and the cost associated with the investment before choosing a fund, or "
    "designing a portfolio that suits your needs. Performance and returns of any "
    "investment portfolio can neither be predicted nor guaranteed."
)

PRIMARY = colors.HexColor("#0b73ff")
TEXT = colors.HexColor("#333333")
MUTED = colors.HexColor("#666666")
BOX = colors.HexColor("#f5f8ff")

_BADGE_COLORS = {
    "buy": colors.HexColor("#16a34a"),
    "sell": colors.HexColor("#dc2626"),
    "hold": colors.HexColor("#f59e0b"),
}

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 50
CONTENT_WIDTH = PAGE_WIDTH - 2 * MARGIN


@dataclass
class ReportData:
    stock_symbol: str
    stock_name: str
    recommendation_type: str
    ltp: float
    target_price: float
    stop_loss: float | None
    time_frame: str
    company_about: str
    technical_reason: str
    summary: str
    disclaimer: str = DEFAULT_DISCLAIMER
    report_date: date | None = None


def report_filename(symbol: str, on: date | None = None) -> str:
    """InvestKaps_{SYMBOL}_{YYYY-MM-DD}"""
    on = on or date.today()
    return f"InvestKaps_{symbol.upper()}_{on.isoformat()}"


def _price(value: float | None) -> str:
    if value is None:
        return "-"
    return f"Rs. {value:,.2f}"


class _Writer:
    """Top-down text cursor over a reportlab canvas"""

    def __init__(self, c: canvas.Canvas) -> None:
        self.c = c
        self.pages = 1

    def ensure(self, top: float, height: float) -> float:
        """Start a new page when height does not fit above the bottom margin"""
        if top + height <= PAGE_HEIGHT - MARGIN:
            return top
        self.c.showPage()
        self.pages += 1
        return MARGIN

    def text(self, x: float, top: float, value: str, font: str, size: float, color=TEXT) -> None:
        self.c.setFillColor(color)
        self.c.setFont(font, size)
        self.c.drawString(x, PAGE_HEIGHT - top - size, value)

    def paragraph(self, top: float, value: str, size: float = 9, leading: float = 12) -> float:
        """Wrapped paragraph, returns the new top"""
        lines = simpleSplit(value or "", "Helvetica", size, CONTENT_WIDTH)
        for line in lines:
            top = self.ensure(top, size)
            self.text(MARGIN, top, line, "Helvetica", size)
            top += leading
        return top

    def section(self, top: float, title: str, body: str) -> float:
        # keep the title with its first line
        top = self.ensure(top, 18 + 9)
        self.text(MARGIN, top, title, "Helvetica-Bold", 11, PRIMARY)
        return self.paragraph(top + 18, body) + 14


def render_report(data: ReportData) -> bytes:
    """Render the report, returns PDF bytes"""
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle(f"InvestKaps {data.stock_symbol} report")
    w = _Writer(c)

    # header band
    c.setFillColor(PRIMARY)
    c.rect(0, PAGE_HEIGHT - 80, PAGE_WIDTH, 80, stroke=0, fill=1)
    w.text(MARGIN, 22, "InvestKaps", "Helvetica-Bold", 24, colors.white)
    w.text(MARGIN, 55, "Stock Recommendation Report", "Helvetica", 12, colors.white)

    # stock + type badge
    w.text(MARGIN, 100, data.stock_symbol, "Helvetica-Bold", 20)
    w.text(MARGIN, 130, data.stock_name, "Helvetica", 14, MUTED)

    badge = _BADGE_COLORS.get(data.recommendation_type, PRIMARY)
    c.setFillColor(badge)
    c.roundRect(450, PAGE_HEIGHT - 130, 95, 30, 5, stroke=0, fill=1)
    c.setFillColor(colors.white)
    c.setFont("Helvetica-Bold", 12)
    c.drawCentredString(497.5, PAGE_HEIGHT - 120, data.recommendation_type.upper())

    # price box
    top = 160
    c.setFillColor(BOX)
    c.setStrokeColor(PRIMARY)
    c.rect(MARGIN, PAGE_HEIGHT - top - 100, CONTENT_WIDTH, 100, stroke=1, fill=1)
    w.text(60, top + 10, "Price Information", "Helvetica-Bold", 11, PRIMARY)
    for x, label, value in (
        (60, "Last Traded Price", data.ltp),
        (220, "Target Price", data.target_price),
        (380, "Stop Loss", data.stop_loss),
    ):
        w.text(x, top + 35, label, "Helvetica", 9, MUTED)
        w.text(x, top + 50, _price(value), "Helvetica-Bold", 14)
    w.text(
        60, top + 78,
        f"Time Frame: {data.time_frame.replace('_', ' ').upper()}",
        "Helvetica", 9, MUTED,
    )

    top += 125
    top = w.section(top, "About the Company", data.company_about)
    top = w.section(top, "Technical Analysis", data.technical_reason)
    top = w.section(top, "Summary", data.summary)

    # disclaimer
    top = w.ensure(top, 14 + 7)
    w.text(MARGIN, top, "DISCLAIMER", "Helvetica-Bold", 8, MUTED)
    top = w.paragraph(top + 14, data.disclaimer, size=7, leading=9) + 16

    # footer
    report_date = data.report_date or date.today()
    top = w.ensure(top, 14 + 7)
    w.text(MARGIN, top, "Generated by InvestKaps", "Helvetica-Bold", 8, PRIMARY)
    w.text(MARGIN, top + 14, f"Report Date: {report_date.strftime('%d/%m/%Y')}", "Helvetica", 7, MUTED)
    w.text(400, top, "www.investkaps.com", "Helvetica", 7, MUTED)

    c.showPage()
    c.save()
    return buf.getvalue()
