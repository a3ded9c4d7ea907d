"""Out-of-band alerts: decision e-mails via Resend and new-order pings via Telegram.

Both channels are optional. When a channel is not configured the helpers
return ``(False, reason)`` without touching the network; callers log and
carry on.
"""

from datetime import datetime
from typing import Optional, Tuple

import requests
import resend

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"


def send_request_decision_email(
    settings, account_document, request_status: str
) -> Tuple[bool, Optional[str]]:
    recipient = (account_document or {}).get("email")
    if not recipient:
        return False, "Account has no e-mail address."

    name = account_document.get("name") or "there"
    if request_status == "approved":
        subject = "Your account has been approved"
        text_body = (
            f"Hello {name},\n\nYour registration has been approved. "
            "You can now sign in and start placing orders."
        )
    else:
        subject = "Your registration request"
        text_body = (
            f"Hello {name},\n\nYour registration request was not approved. "
            "Please contact support if you believe this is a mistake."
        )

    api_key = (settings.resend_api_key or "").strip()
    if not api_key:
        return False, "Resend API key is not configured."

    resend.api_key = api_key
    try:
        response = resend.Emails.send(
            {
                "from": f"Jewel Orders <{settings.decision_sender_email}>",
                "to": [recipient],
                "subject": subject,
                "text": text_body,
            }
        )
    except Exception as exc:
        return False, str(exc)

    if not isinstance(response, dict) or not response.get("id"):
        return False, f"Unexpected Resend response: {response!r}"
    return True, None


def send_telegram_message(settings, text: str) -> Tuple[bool, Optional[str]]:
    if not settings.telegram_enabled():
        return False, "Telegram is not configured."

    try:
        response = requests.post(
            TELEGRAM_API_URL.format(token=settings.telegram_bot_token),
            json={
                "chat_id": settings.telegram_chat_id,
                "text": text,
                "parse_mode": "HTML",
            },
            timeout=settings.telegram_timeout_seconds,
        )
        data = response.json()
    except (requests.RequestException, ValueError) as exc:
        return False, str(exc)

    if not data.get("ok"):
        return False, str(data.get("description") or "Telegram API error")
    return True, None


def send_new_order_alert(settings, order_document, salesman_name: Optional[str] = None):
    lines = [
        "<b>New Order Placed</b>",
        "",
        f"<b>Order No:</b> {order_document.get('order_code', '')}",
        f"<b>Product:</b> {order_document.get('product_name', '')}",
        f"<b>Customer:</b> {order_document.get('customer_name', '')}",
    ]
    if salesman_name:
        lines.append(f"<b>Salesman:</b> {salesman_name}")
    lines.append(f"<b>Time:</b> {datetime.utcnow().strftime('%Y-%m-%d %H:%M')} UTC")
    return send_telegram_message(settings, "\n".join(lines))
