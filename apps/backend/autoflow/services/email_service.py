import logging
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Optional

import aiosmtplib

from autoflow.config import settings

logger = logging.getLogger(__name__)


async def send_email(
    to_email: str,
    subject: str,
    html_content: str,
    from_name: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> dict:
    """
    Send an HTML email over SMTP.

    Args:
        to_email: Recipient email address
        subject: Email subject
        html_content: HTML email body
        from_name: Display name (optional, uses SMTP_FROM_NAME if not provided)
        reply_to: Reply-To address (optional)

    Returns:
        dict: {"success": bool, "id": message id or None, "error": str or None}
    """
    message_id = f"<{uuid.uuid4().hex}@autoflow>"
    if not settings.SMTP_USERNAME or not settings.SMTP_PASSWORD:
        logger.warning("⚠️ SMTP not configured - would send email to %s (subject: %s)", to_email, subject)
        return {"success": True, "id": message_id, "error": None}

    from_email = settings.SMTP_FROM_EMAIL or settings.SMTP_USERNAME
    from_name = from_name or settings.SMTP_FROM_NAME

    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = f"{from_name} <{from_email}>"
    message["To"] = to_email
    message["Message-ID"] = message_id
    if reply_to:
        message["Reply-To"] = reply_to
    message.attach(MIMEText(html_content, "html"))

    try:
        await aiosmtplib.send(
            message,
            hostname=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            start_tls=settings.SMTP_USE_TLS,
            use_tls=False,
        )
    except (aiosmtplib.SMTPException, OSError) as e:
        logger.error("❌ Email to %s failed: %s", to_email, e)
        return {"success": False, "id": None, "error": str(e)}

    logger.info("✅ Email sent to %s", to_email)
    return {"success": True, "id": message_id, "error": None}


def branded_html(body: str, business_name: str) -> str:
    """Wrap a plain-text body in the customer-facing email shell."""
    html_body = escape(body).replace("\n", "<br>")
    return f'''
    <!DOCTYPE html>
    <html>
    <head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"></head>
    <body style="margin:0;padding:0;background-color:#f8fafc;font-family:-apple-system,'Segoe UI',Roboto,sans-serif;">
      <table width="100%" cellpadding="0" cellspacing="0" style="background-color:#f8fafc;padding:40px 20px;">
        <tr><td align="center">
          <table width="100%" cellpadding="0" cellspacing="0" style="max-width:560px;background-color:#ffffff;border-radius:12px;">
            <tr><td style="background:linear-gradient(135deg,#338bfc,#1555de);padding:24px 32px;">
              <span style="color:#ffffff;font-size:18px;font-weight:700;">{escape(business_name)}</span>
            </td></tr>
            <tr><td style="padding:32px;color:#1e293b;font-size:15px;line-height:1.7;">{html_body}</td></tr>
            <tr><td style="padding:20px 32px;border-top:1px solid #e2e8f0;color:#94a3b8;font-size:12px;">
              Sent via AutoFlow AI, smart lead management for small business
            </td></tr>
          </table>
        </td></tr>
      </table>
    </body>
    </html>
    '''


def _owner_card(title: str, colour: str, rows: str) -> str:
    return f'''
    <div style="font-family: sans-serif; max-width: 600px;">
      <h2 style="color: {colour};">{title}</h2>
      {rows}
      <p>View it in your <a href="{escape(settings.ADMIN_DASHBOARD_URL)}/leads">dashboard</a>.</p>
    </div>
    '''


def _quote(text: str, background: str = "#f1f5f9") -> str:
    return f'<blockquote style="background: {background}; padding: 12px; border-radius: 8px;">{escape(text)}</blockquote>'


# --- Business owner notifications ------------------------------------------

async def notify_missed_call(owner_email: str, caller_number: str, text_back: str, sms_sent: bool) -> dict:
    rows = (
        f"<p>You missed a call from <strong>{escape(caller_number)}</strong>.</p>"
        f"<p>An automatic text-back was {'sent' if sms_sent else 'attempted but failed'} on your behalf.</p>"
        + (_quote(text_back, "#f0fdf4") if sms_sent else "")
        + "<p>If they reply, the AI will continue the conversation.</p>"
    )
    return await send_email(
        to_email=owner_email,
        subject=f"📞 Missed call from {caller_number}",
        html_content=_owner_card("🔴 Missed Call Alert", "#ef4444", rows),
    )


async def notify_escalation(owner_email: str, customer_number: str, reason: Optional[str], last_message: str) -> dict:
    rows = (
        f"<p>The AI handed the SMS conversation with <strong>{escape(customer_number)}</strong> over to you.</p>"
        f"<p><strong>Reason:</strong> {escape(reason or 'Needs a human')}</p>"
        f"<p><strong>Last message:</strong></p>{_quote(last_message)}"
        "<p>Automated replies are paused for this customer until you re-activate the conversation.</p>"
    )
    return await send_email(
        to_email=owner_email,
        subject=f"⚠️ SMS from {customer_number} needs your attention",
        html_content=_owner_card("⚠️ Conversation Escalated", "#f59e0b", rows),
    )


async def notify_escalated_message(owner_email: str, customer_number: str, message: str) -> dict:
    rows = (
        f"<p><strong>{escape(customer_number)}</strong> sent a new message in an escalated conversation:</p>"
        f"{_quote(message)}"
        "<p>No automated reply was sent.</p>"
    )
    return await send_email(
        to_email=owner_email,
        subject=f"💬 New SMS from {customer_number}",
        html_content=_owner_card("💬 Customer Replied", "#338bfc", rows),
    )


async def notify_voicemail(
    owner_email: str,
    caller_number: str,
    urgency: str,
    category: str,
    transcription: str,
    summary: str,
    recording_url: Optional[str] = None,
) -> dict:
    rows = (
        f"<p><strong>From:</strong> {escape(caller_number)}</p>"
        f"<p><strong>Urgency:</strong> {escape(urgency.upper())}</p>"
        f"<p><strong>Category:</strong> {escape(category)}</p>"
        f"<p><strong>Transcription:</strong></p>{_quote(transcription)}"
        f"<p><strong>AI Summary:</strong> {escape(summary)}</p>"
        + (f'<p><a href="{escape(recording_url)}">Listen to voicemail</a></p>' if recording_url else "")
    )
    return await send_email(
        to_email=owner_email,
        subject=f"🎙️ New voicemail from {caller_number} - {urgency.upper()}",
        html_content=_owner_card("🎙️ Voicemail Received", "#8b5cf6", rows),
    )


async def notify_new_lead(owner_email: str, lead_name: str, lead_email: Optional[str], urgency: str, category: str, summary: str, message: str) -> dict:
    rows = (
        f"<p><strong>Name:</strong> {escape(lead_name)}</p>"
        f"<p><strong>Email:</strong> {escape(lead_email or '-')}</p>"
        f"<p><strong>Urgency:</strong> {escape(urgency.upper())}</p>"
        f"<p><strong>Category:</strong> {escape(category)}</p>"
        f"<p><strong>AI Summary:</strong> {escape(summary)}</p>"
        f"<p><strong>Message:</strong></p>{_quote(message)}"
    )
    return await send_email(
        to_email=owner_email,
        subject=f"🔔 New {urgency.upper()} lead: {lead_name}",
        html_content=_owner_card("🔔 New Lead", "#22c55e", rows),
    )


# --- Customer emails -------------------------------------------------------

async def send_auto_reply(to_email: str, business_name: str, body: str, reply_to: Optional[str] = None) -> dict:
    return await send_email(
        to_email=to_email,
        subject=f"Re: Your enquiry to {business_name}",
        html_content=branded_html(body, business_name),
        from_name=f"{business_name} via AutoFlow",
        reply_to=reply_to,
    )


async def send_booking_confirmation(
    to_email: str,
    customer_name: str,
    business_name: str,
    day_label: str,
    time_label: str,
    address: Optional[str] = None,
) -> dict:
    """
    Confirm an SMS-booked job to the customer.

    Args:
        to_email: Customer email
        customer_name: Customer name as collected
        business_name: Business display name
        day_label: e.g. "Monday 19 Oct"
        time_label: e.g. "9:00am"
        address: Service address, when known

    Returns:
        dict: send_email result
    """
    first_name = (customer_name or "there").split(" ")[0]
    body = (
        f"Hi {first_name},\n\n"
        f"You're booked in with {business_name} on {day_label} at {time_label}."
        + (f"\nAddress: {address}" if address else "")
        + "\n\nWe'll text you a reminder the day before and again a couple of hours out. "
        "If you need to change anything, just reply to our text.\n\n"
        f"Cheers,\n{business_name}"
    )
    return await send_email(
        to_email=to_email,
        subject=f"Booking confirmed - {day_label} at {time_label}",
        html_content=branded_html(body, business_name),
        from_name=f"{business_name} via AutoFlow",
    )


async def send_follow_up(to_email: str, business_name: str, body: str, reply_to: Optional[str] = None) -> dict:
    return await send_email(
        to_email=to_email,
        subject=f"Following up - {business_name}",
        html_content=branded_html(body, business_name),
        from_name=f"{business_name} via AutoFlow",
        reply_to=reply_to,
    )
