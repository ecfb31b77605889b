"""E-mail templates and the Resend HTTP API client.

Without ``RESEND_API_KEY`` the mailer reports itself as not configured and
the service skips sending instead of failing.
"""

import html
import os
from dataclasses import dataclass

import httpx

RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
EMAIL_FROM = os.getenv("EMAIL_FROM", "Orders <orders@example.com>")
ORDER_TRACKING_URL = os.getenv("ORDER_TRACKING_URL", "http://localhost:3000/orders")

MESSAGES = {
    "ready": "Your order is being prepared and will be delivered soon!",
    "delivered": "Your order has been delivered. Thank you for shopping with us!",
}


@dataclass(frozen=True)
class Email:
    to: str
    subject: str
    html: str


def render(to: str, template_key: str, order_id: str, customer_name: str) -> Email:
    """Render the message for ``template_key``.

    Raises:
        KeyError: Unknown template key.
    """
    message = MESSAGES[template_key]
    link = f"{ORDER_TRACKING_URL.rstrip('/')}/{order_id}"
    body = (
        f"<h2>Hi {html.escape(customer_name)},</h2>"
        f"<p>{message}</p>"
        f'<p>Track your order: <a href="{html.escape(link)}">View Status</a></p>'
    )
    return Email(to=to, subject=f"Order Update: {template_key.upper()}", html=body)


class ResendMailer:
    """Sends e-mails through the Resend REST API."""

    def __init__(self, api_key: str | None = None, sender: str | None = None, timeout: float = 5.0):
        self.api_key = api_key if api_key is not None else os.getenv("RESEND_API_KEY", "")
        self.sender = sender or EMAIL_FROM
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def send(self, email: Email) -> str:
        """Send ``email`` and return the provider message id.

        Raises:
            httpx.HTTPError: Transport errors and non-2xx responses.
        """
        with httpx.Client(timeout=self.timeout) as client:
            resp = client.post(
                RESEND_API_URL,
                json={"from": self.sender, "to": [email.to], "subject": email.subject, "html": email.html},
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            resp.raise_for_status()
            return str(resp.json().get("id", ""))
