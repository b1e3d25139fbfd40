import asyncio
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest
from reportlab.pdfgen.canvas import Canvas

from investkaps import storage
from investkaps.config import settings
from investkaps.models.recommendation import StockRecommendation
from investkaps.notification import email, telegram
from investkaps.report.pdf import MARGIN, ReportData, render_report, report_filename


@pytest.fixture
def rec():
    return StockRecommendation(
        id=1,
        title="Breakout call",
        stock_symbol="TCS",
        stock_name="Tata Consultancy Services",
        current_price=3500.0,
        target_price=3900.0,
        target_price2=4100.0,
        stop_loss=3300.0,
        recommendation_type="buy",
        time_frame="medium_term",
        description="Breakout above resistance",
        rationale="Volume expansion",
    )


# --- telegram ---

def test_format_recommendation(rec) -> None:
    text = telegram.format_recommendation(rec)

    assert text.startswith("🟢 *NEW STOCK RECOMMENDATION* 🟢")
    assert "📊 *TCS* - Tata Consultancy Services" in text
    assert "• Target 2: ₹4100.0" in text
    assert "• Stop Loss: ₹3300.0" in text
    assert "Target 3" not in text
    assert "⏰ *Time Frame:* MEDIUM TERM" in text
    assert "💡 *Rationale:*" in text
    assert "Full Report" not in text


def test_format_recommendation_escapes_markdown(rec) -> None:
    rec.stock_name = "M_M *Financial*"
    rec.description = "Watch [support] at 1_200"
    rec.pdf_url = "/uploads/recommendations/m_m.pdf"

    text = telegram.format_recommendation(rec)

    assert "📊 *TCS* - M\\_M \\*Financial\\*" in text
    assert "Watch \\[support] at 1\\_200" in text
    assert "📄 *Full Report:* /uploads/recommendations/m\\_m.pdf" in text


def test_truncate_long_message() -> None:
    message = telegram._truncate("x" * 5000)
    assert message.endswith("... (truncated)")
    assert len(message) < 5000


def test_send_without_token_skips(rec, monkeypatch) -> None:
    monkeypatch.setattr(settings, "TELEGRAM_BOT_TOKEN", "")
    assert asyncio.run(telegram.send_recommendation(rec, ["-1001"])) == 0


def test_send_falls_back_to_default_chat(rec, monkeypatch) -> None:
    monkeypatch.setattr(settings, "TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setattr(settings, "TELEGRAM_CHAT_ID", "-100999")
    bot = MagicMock()
    bot.send_message = AsyncMock()
    monkeypatch.setattr(telegram, "_get_bot", lambda: bot)

    delivered = asyncio.run(telegram.send_recommendation(rec, []))

    assert delivered == 1
    assert bot.send_message.await_args.kwargs["chat_id"] == "-100999"


def test_send_counts_failed_chats(rec, monkeypatch) -> None:
    monkeypatch.setattr(settings, "TELEGRAM_BOT_TOKEN", "123:abc")
    bot = MagicMock()
    bot.send_message = AsyncMock(side_effect=[None, RuntimeError("chat not found")])
    monkeypatch.setattr(telegram, "_get_bot", lambda: bot)

    assert asyncio.run(telegram.send_recommendation(rec, ["-1", "-2"])) == 1


# --- email ---

def test_send_email_without_smtp(monkeypatch) -> None:
    monkeypatch.setattr(settings, "SMTP_HOST", "")
    assert email.send_email("a@example.com", "Hi", "<p>Hi</p>") is False


def test_send_email_uses_smtp(monkeypatch) -> None:
    monkeypatch.setattr(settings, "SMTP_HOST", "smtp.test")
    monkeypatch.setattr(settings, "SMTP_USER", "mailer")
    monkeypatch.setattr(settings, "SMTP_PASSWORD", "pw")
    smtp = MagicMock()
    monkeypatch.setattr(email.smtplib, "SMTP", smtp)

    assert email.send_email("a@example.com", "Hi", "<p>Hi</p>") is True

    conn = smtp.return_value.__enter__.return_value
    conn.starttls.assert_called_once()
    conn.login.assert_called_once_with("mailer", "pw")
    sent = conn.send_message.call_args.args[0]
    assert sent["To"] == "a@example.com"
    assert sent["Subject"] == "Hi"


def test_recommendation_email_escapes_html(rec, user, monkeypatch) -> None:
    send = MagicMock(return_value=True)
    monkeypatch.setattr(email, "send_email", send)
    rec.description = "<script>alert(1)</script>"

    assert email.send_recommendation_email(user, rec)

    to, subject, html = send.call_args.args[:3]
    assert to == user.email
    assert "TCS" in subject
    assert "<script>" not in html


# --- PDF report ---

def test_report_filename() -> None:
    assert report_filename("tcs", date(2024, 5, 1)) == "InvestKaps_TCS_2024-05-01"


def test_render_report() -> None:
    pdf = render_report(ReportData(
        stock_symbol="TCS",
        stock_name="Tata Consultancy Services",
        recommendation_type="buy",
        ltp=3500.0,
        target_price=3900.0,
        stop_loss=None,
        time_frame="medium_term",
        company_about="IT services major. " * 40,
        technical_reason="Breakout above resistance on volume",
        summary="Accumulate on dips",
        report_date=date(2024, 5, 1),
    ))

    assert pdf.startswith(b"%PDF")
    assert len(pdf) > 1000


def test_long_report_continues_on_new_pages(monkeypatch) -> None:
    drawn: list[tuple[float, str]] = []
    pages: list[int] = []
    draw_string = Canvas.drawString
    show_page = Canvas.showPage

    def spy_draw(self, x, y, text, *args, **kwargs):
        drawn.append((y, text))
        return draw_string(self, x, y, text, *args, **kwargs)

    def spy_page(self):
        pages.append(1)
        return show_page(self)

    monkeypatch.setattr(Canvas, "drawString", spy_draw)
    monkeypatch.setattr(Canvas, "showPage", spy_page)
    long_text = "Margins expanded on the back of strong order inflows. " * 120

    pdf = render_report(ReportData(
        stock_symbol="TCS",
        stock_name="Tata Consultancy Services",
        recommendation_type="buy",
        ltp=3500.0,
        target_price=3900.0,
        stop_loss=3300.0,
        time_frame="long_term",
        company_about=long_text,
        technical_reason=long_text,
        summary=long_text,
    ))

    assert pdf.startswith(b"%PDF")
    assert len(pages) > 2
    assert min(y for y, _ in drawn) >= MARGIN
    assert any(text == "Generated by InvestKaps" for _, text in drawn)


# --- storage ---

def test_storage_roundtrip() -> None:
    stored = storage.save_bytes("reports", "sample.pdf", b"%PDF-1.4")

    assert stored.public_id == "reports/sample.pdf"
    assert stored.url.endswith("/files/reports/sample.pdf")
    assert storage.read_bytes(stored.public_id) == b"%PDF-1.4"
    assert storage.delete(stored.public_id) is True
    assert storage.delete(stored.public_id) is False


def test_storage_rejects_traversal() -> None:
    with pytest.raises(ValueError):
        storage.save_bytes("..", "escape.txt", b"x")
