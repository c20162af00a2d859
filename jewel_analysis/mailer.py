import logging
import os
import smtplib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any

from jewel_analysis.errors import EmailDispatchError
from jewel_analysis.reports import batch_report_csv, batch_report_html, batch_report_pdf, batch_title

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SmtpConfig:
    host: str
    port: int = 587
    username: str = ""
    password: str = ""
    sender: str = ""
    use_tls: bool = True

    @classmethod
    def from_env(cls) -> "SmtpConfig":
        try:
            port = int(os.getenv("SMTP_PORT", "587"))
        except ValueError:
            port = 587
        username = os.getenv("SMTP_USERNAME", "").strip()
        return cls(
            host=os.getenv("SMTP_HOST", "").strip(),
            port=port,
            username=username,
            password=os.getenv("SMTP_PASSWORD", ""),
            sender=os.getenv("SMTP_FROM", "").strip() or username,
            use_tls=os.getenv("SMTP_USE_TLS", "true").strip().lower() not in {"0", "false", "no"},
        )


def build_batch_message(
    batch: Mapping[str, Any],
    records: Sequence[Mapping[str, Any]],
    recipients: Sequence[str],
    sender: str,
    currency: str = "",
) -> EmailMessage:
    title = batch_title(batch)
    slug = f"batch-{batch['batch_number']}"

    message = EmailMessage()
    message["Subject"] = f"Cost analysis: {title}"
    message["From"] = sender
    message["To"] = recipients[0]
    if len(recipients) > 1:
        message["Cc"] = ", ".join(recipients[1:])

    message.set_content(f"{title}\n\nThe batch report is attached as CSV and PDF.")
    message.add_alternative(batch_report_html(batch, records, currency), subtype="html")
    message.add_attachment(batch_report_csv(records), maintype="text", subtype="csv", filename=f"{slug}.csv")
    message.add_attachment(
        batch_report_pdf(batch, records, currency),
        maintype="application",
        subtype="pdf",
        filename=f"{slug}.pdf",
    )
    return message


def send_batch_report(
    batch: Mapping[str, Any],
    records: Sequence[Mapping[str, Any]],
    recipients: Sequence[str],
    config: SmtpConfig | None = None,
    currency: str = "",
) -> None:
    config = config or SmtpConfig.from_env()
    recipients = [email for email in recipients if email]
    if not config.host:
        raise EmailDispatchError("SMTP_HOST is not configured.")
    if not recipients:
        raise EmailDispatchError("No report recipients configured. Add an owner e-mail in Settings.")
    if not config.sender:
        raise EmailDispatchError("SMTP_FROM is not configured.")

    message = build_batch_message(batch, records, recipients, config.sender, currency)
    try:
        with smtplib.SMTP(config.host, config.port, timeout=30) as smtp:
            if config.use_tls:
                smtp.starttls()
            if config.username:
                smtp.login(config.username, config.password)
            smtp.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("Sending %s to %s failed: %s", batch_title(batch), recipients, exc)
        raise EmailDispatchError(f"Could not send the report: {exc}") from exc

    logger.info("Sent %s report to %d recipient(s)", batch_title(batch), len(recipients))
