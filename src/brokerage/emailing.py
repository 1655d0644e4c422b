"""SMTP email delivery and the HTML templates used for customer notices."""

from __future__ import annotations

import logging
import re
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from html import escape as html_escape
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EmailContent:
    subject: str
    html: str
    text: str


class EmailClient:
    """Very small wrapper around :mod:`smtplib` with test-friendly fallbacks.

    When no host is configured, or delivery fails, messages are kept in an
    in-memory outbox instead.
    """

    def __init__(
        self,
        host: str,
        port: int,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self._outbox: List[EmailMessage] = []

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def build_message(
        self,
        subject: str,
        body: str,
        *,
        sender: str,
        recipients: Sequence[str],
        html: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = sender
        message["To"] = ", ".join(recipients)
        if reply_to:
            message["Reply-To"] = reply_to
        message.set_content(body)
        if html:
            message.add_alternative(html, subtype="html")
        return message

    def send(self, message: EmailMessage) -> bool:
        """Deliver ``message``; returns ``False`` when it was only queued locally."""

        if not self.enabled:
            self._outbox.append(message)
            return False
        try:
            with smtplib.SMTP(self.host, self.port, timeout=5) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(message)
        except (OSError, smtplib.SMTPException) as exc:
            logger.warning("Email delivery to %s failed: %s", message["To"], exc)
            self._outbox.append(message)
            return False
        return True

    def deliveries(self) -> Sequence[EmailMessage]:
        return tuple(self._outbox)

    def clear(self) -> None:
        self._outbox.clear()


def _strip_tags(html: str) -> str:
    text = re.sub(r"<br\s*/?>|</p>|</tr>|</h2>", "\n", html)
    text = re.sub(r"<[^>]+>", "", text)
    return re.sub(r"\n\s*\n+", "\n\n", text).strip()


class EmailTemplates:
    """Render branded notification emails."""

    def __init__(self, site_name: str, app_url: str) -> None:
        self.site_name = site_name
        self.app_url = app_url.rstrip("/")

    def _layout(self, subject: str, heading: str, body: str, *, accent: str = "#2563eb") -> EmailContent:
        site = html_escape(self.site_name)
        html = (
            "<html><body style='margin:0;background:#f1f5f9;font-family:Arial,sans-serif;'>"
            "<table width='100%' cellpadding='0' cellspacing='0'><tr><td align='center' style='padding:24px;'>"
            "<table width='600' style='background:#ffffff;border-radius:12px;overflow:hidden;'>"
            f"<tr><td style='background:{accent};color:#fff;padding:20px 24px;font-size:20px;font-weight:700;'>{site}</td></tr>"
            f"<tr><td style='padding:24px;color:#0f172a;'><h2 style='margin-top:0;'>{html_escape(heading)}</h2>{body}</td></tr>"
            f"<tr><td style='padding:16px 24px;color:#64748b;font-size:12px;'>&copy; {site}. "
            "This is an automated message, please do not reply.</td></tr>"
            "</table></td></tr></table></body></html>"
        )
        return EmailContent(subject=f"{self.site_name} - {subject}", html=html, text=_strip_tags(body))

    @staticmethod
    def _details(rows: Sequence[tuple[str, str]]) -> str:
        cells = "".join(
            f"<tr><td style='padding:6px 12px;color:#475569;'>{html_escape(label)}</td>"
            f"<td style='padding:6px 12px;font-weight:600;'>{html_escape(value)}</td></tr>"
            for label, value in rows
        )
        return f"<table style='border:1px solid #e2e8f0;border-radius:8px;margin:12px 0;'>{cells}</table>"

    def _greeting(self, name: str) -> str:
        return f"<p>Hello {html_escape(name)},</p>"

    def welcome(self, name: str) -> EmailContent:
        body = (
            f"{self._greeting(name)}<p>Your {html_escape(self.site_name)} account is ready. "
            "Complete your KYC verification to unlock withdrawals, then fund your account to get started.</p>"
            f"<p><a href='{self.app_url}/dashboard'>Go to your dashboard</a></p>"
        )
        return self._layout("Your Account is Ready", "Welcome aboard!", body)

    def transaction(self, name: str, tx_type: str, status: str, amount: str, reference: str) -> EmailContent:
        label = tx_type.title()
        status_label = {"PENDING": "Pending", "APPROVED": "Approved", "DECLINED": "Declined"}.get(status, status.title())
        body = (
            f"{self._greeting(name)}<p>Your {label.lower()} has been updated.</p>"
            + self._details([("Type", label), ("Amount", amount), ("Status", status_label), ("Reference", reference)])
        )
        accent = "#dc2626" if status == "DECLINED" else "#2563eb"
        return self._layout(f"{label} {status_label}", f"{label} {status_label}", body, accent=accent)

    def deposit_submitted(self, name: str, amount: str, reference: str, method: str) -> EmailContent:
        body = (
            f"{self._greeting(name)}<p>We received your deposit request. It will be credited once our team confirms the payment.</p>"
            + self._details([("Amount", amount), ("Method", method), ("Reference", reference), ("Status", "Pending")])
        )
        return self._layout(f"Deposit Request Submitted ({reference})", "Deposit request received", body)

    def deposit_approved(self, name: str, amount: str, reference: str) -> EmailContent:
        body = (
            f"{self._greeting(name)}<p>Your deposit has been approved and credited to your account.</p>"
            + self._details([("Amount", amount), ("Reference", reference)])
        )
        return self._layout(f"Deposit Approved! (+{amount})", "Deposit approved", body, accent="#16a34a")

    def deposit_declined(self, name: str, amount: str, reference: str) -> EmailContent:
        body = (
            f"{self._greeting(name)}<p>Unfortunately your deposit could not be verified and was declined. "
            "Contact support if you believe this is a mistake.</p>"
            + self._details([("Amount", amount), ("Reference", reference)])
        )
        return self._layout(f"Deposit Declined ({reference})", "Deposit declined", body, accent="#dc2626")

    def withdrawal_pending(self, name: str, amount: str, method: str, reference: str) -> EmailContent:
        body = (
            f"{self._greeting(name)}<p>Your withdrawal request is being processed.</p>"
            + self._details([("Amount", amount), ("Method", method), ("Reference", reference), ("Status", "Pending")])
        )
        return self._layout("Withdrawal Pending", "Withdrawal requested", body)

    def withdrawal_approved(self, name: str, amount: str, reference: str) -> EmailContent:
        body = (
            f"{self._greeting(name)}<p>Your withdrawal has been approved and sent.</p>"
            + self._details([("Amount", amount), ("Reference", reference)])
        )
        return self._layout("Withdrawal Approved", "Withdrawal approved", body, accent="#16a34a")

    def withdrawal_declined(self, name: str, amount: str, reference: str) -> EmailContent:
        body = (
            f"{self._greeting(name)}<p>Your withdrawal was declined and the amount has been returned to your balance.</p>"
            + self._details([("Amount", amount), ("Reference", reference)])
        )
        return self._layout("Withdrawal Declined", "Withdrawal declined", body, accent="#dc2626")

    def kyc_submitted(self, name: str) -> EmailContent:
        body = f"{self._greeting(name)}<p>We received your verification documents. Reviews usually take 1-2 business days.</p>"
        return self._layout("KYC Verification Submitted", "Verification submitted", body)

    def kyc_result(self, name: str, approved: bool, reason: Optional[str] = None) -> EmailContent:
        if approved:
            body = f"{self._greeting(name)}<p>Your identity has been verified. All account features are now available.</p>"
            return self._layout("KYC Verification Approved", "Verification approved", body, accent="#16a34a")
        body = f"{self._greeting(name)}<p>We could not verify your identity.</p>"
        if reason:
            body += self._details([("Reason", reason)])
        body += f"<p><a href='{self.app_url}/dashboard/kyc'>Submit new documents</a></p>"
        return self._layout("KYC Verification Declined", "Verification declined", body, accent="#dc2626")

    def account_status(self, name: str, *, suspended: bool) -> EmailContent:
        if suspended:
            body = f"{self._greeting(name)}<p>Your account has been suspended. Please contact support for more information.</p>"
            return self._layout("Account Suspended", "Account suspended", body, accent="#dc2626")
        body = f"{self._greeting(name)}<p>Your account has been reactivated. You can sign in again.</p>"
        return self._layout("Account Reactivated", "Account reactivated", body, accent="#16a34a")

    def admin_deposit(self, name: str, amount: str, description: str) -> EmailContent:
        body = (
            f"{self._greeting(name)}<p>A deposit has been credited to your account.</p>"
            + self._details([("Amount", amount), ("Description", description or "Deposit")])
        )
        return self._layout(f"Deposit Credited (+{amount})", "Deposit credited", body, accent="#16a34a")

    def admin_withdrawal(self, name: str, amount: str, description: str) -> EmailContent:
        body = (
            f"{self._greeting(name)}<p>A withdrawal has been processed on your account.</p>"
            + self._details([("Amount", amount), ("Description", description or "Withdrawal")])
        )
        return self._layout(f"Withdrawal Processed (-{amount})", "Withdrawal processed", body)

    def profit_credited(self, name: str, amount: str, source: str) -> EmailContent:
        body = (
            f"{self._greeting(name)}<p>Profit has been credited to your account.</p>"
            + self._details([("Amount", amount), ("Source", source)])
        )
        return self._layout(f"Profit Credited! (+{amount})", "Profit credited", body, accent="#16a34a")

    def bonus_credited(self, name: str, amount: str, description: str) -> EmailContent:
        body = (
            f"{self._greeting(name)}<p>You received a bonus.</p>"
            + self._details([("Amount", amount), ("Description", description or "Bonus")])
        )
        return self._layout(f"Bonus Received! (+{amount})", "Bonus received", body, accent="#16a34a")

    def password_reset(self, name: str, token: str) -> EmailContent:
        link = f"{self.app_url}/reset-password?token={token}"
        body = (
            f"{self._greeting(name)}<p>We received a request to reset your password. "
            "The link below is valid for 1 hour.</p>"
            f"<p><a href='{html_escape(link)}'>{html_escape(link)}</a></p>"
            "<p>If you did not request this, you can ignore this email.</p>"
        )
        return self._layout("Password Reset", "Reset your password", body)

    def contact(self, name: str, email: str, subject: str, message: str) -> EmailContent:
        body = self._details([("Name", name), ("Email", email), ("Subject", subject)]) + (
            f"<p style='white-space:pre-wrap;'>{html_escape(message)}</p>"
        )
        return self._layout(f"Contact Form: {subject}", "New contact message", body)


__all__ = ["EmailClient", "EmailContent", "EmailTemplates"]
