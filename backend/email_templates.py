import html as html_lib
from typing import Optional, Tuple

SIGNATURE_TEXT = "Regards,\nThittam1Hub Events Team\n"
SIGNATURE_HTML = "Regards,<br><strong>Thittam1Hub Events Team</strong>"


def _wrap_html(heading: str, body: str) -> str:
    return f"""
    <html>
      <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #1b1f24;">
        <div style="max-width: 560px; margin: 0 auto; padding: 24px; border: 1px solid #e6e6e6; border-radius: 12px;">
          <h2 style="margin-top: 0;">{heading}</h2>
          {body}
          <hr style="border: none; border-top: 1px solid #e6e6e6; margin: 24px 0;" />
          <p style="margin-bottom: 0;">{SIGNATURE_HTML}</p>
        </div>
      </body>
    </html>
    """


def _button(url: str, label: str) -> str:
    return (
        '<p style="text-align: center; margin: 24px 0;">'
        f'<a href="{html_lib.escape(url)}" style="display:inline-block;padding:12px 18px;background:#11131a;color:#fff;'
        f'text-decoration:none;border-radius:6px;">{label}</a></p>'
    )


def build_registration_confirmation_email(
    name: str,
    event_title: str,
    ticket_name: str,
    registration_id: str,
    total_amount: float = 0.0,
    currency: str = "INR",
) -> Tuple[str, str, str]:
    subject = f"You're registered for {event_title}"
    amount_line = f"Amount: {currency} {total_amount:.2f}\n" if total_amount else "Amount: Free\n"
    text = (
        f"Hello {name},\n\n"
        f"Your registration for {event_title} is confirmed.\n"
        f"Ticket: {ticket_name}\n"
        f"{amount_line}"
        f"Registration ID: {registration_id}\n\n"
        "Please keep this ID handy for check-in.\n\n"
        f"{SIGNATURE_TEXT}"
    )
    amount_html = f"{currency} {total_amount:.2f}" if total_amount else "Free"
    body = (
        f"<p>Hello {html_lib.escape(name)},</p>"
        f"<p>Your registration for <strong>{html_lib.escape(event_title)}</strong> is confirmed.</p>"
        "<ul>"
        f"<li>Ticket: {html_lib.escape(ticket_name)}</li>"
        f"<li>Amount: {amount_html}</li>"
        f"<li>Registration ID: <code>{registration_id}</code></li>"
        "</ul>"
        "<p>Please keep this ID handy for check-in.</p>"
    )
    return subject, _wrap_html("Registration confirmed", body), text


def build_registration_invitation_email(
    event_title: str,
    ticket_name: str,
    register_url: Optional[str] = None,
) -> Tuple[str, str, str]:
    subject = f"You're invited to {event_title}"
    link_line = f"Register here: {register_url}\n\n" if register_url else "\n"
    text = (
        "Hello,\n\n"
        f"You have been invited to attend {event_title} with a {ticket_name} ticket.\n"
        f"{link_line}"
        f"{SIGNATURE_TEXT}"
    )
    body = (
        "<p>Hello,</p>"
        f"<p>You have been invited to attend <strong>{html_lib.escape(event_title)}</strong> "
        f"with a <strong>{html_lib.escape(ticket_name)}</strong> ticket.</p>"
    )
    if register_url:
        body += _button(register_url, "Register Now")
    return subject, _wrap_html("You're invited", body), text


def build_waitlist_invite_email(name: str, event_title: str, register_url: Optional[str] = None) -> Tuple[str, str, str]:
    subject = f"A spot opened up for {event_title}"
    link_line = f"Claim your spot: {register_url}\n\n" if register_url else "\n"
    text = (
        f"Hello {name},\n\n"
        f"Good news! A spot has opened up for {event_title} and you are next on the waitlist.\n"
        "Spots are offered first come, first served, so please register soon.\n"
        f"{link_line}"
        f"{SIGNATURE_TEXT}"
    )
    body = (
        f"<p>Hello {html_lib.escape(name)},</p>"
        f"<p>Good news! A spot has opened up for <strong>{html_lib.escape(event_title)}</strong> "
        "and you are next on the waitlist.</p>"
        "<p>Spots are offered first come, first served, so please register soon.</p>"
    )
    if register_url:
        body += _button(register_url, "Claim Your Spot")
    return subject, _wrap_html("A spot opened up", body), text


def build_waitlist_promotion_email(name: str, event_title: str, ticket_name: str, registration_id: str) -> Tuple[str, str, str]:
    subject = f"You're off the waitlist for {event_title}"
    text = (
        f"Hello {name},\n\n"
        f"You have been moved off the waitlist and registered for {event_title}.\n"
        f"Ticket: {ticket_name}\n"
        f"Registration ID: {registration_id}\n\n"
        f"{SIGNATURE_TEXT}"
    )
    body = (
        f"<p>Hello {html_lib.escape(name)},</p>"
        f"<p>You have been moved off the waitlist and registered for <strong>{html_lib.escape(event_title)}</strong>.</p>"
        "<ul>"
        f"<li>Ticket: {html_lib.escape(ticket_name)}</li>"
        f"<li>Registration ID: <code>{registration_id}</code></li>"
        "</ul>"
    )
    return subject, _wrap_html("You're in!", body), text
