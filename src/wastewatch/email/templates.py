"""
Transactional email templates for the portal.

Inline CSS only, green-on-white branding. Every template function returns
``(subject, html_body, text_body)``.
"""

from __future__ import annotations

from html import escape

GREEN = "#15803D"
GREEN_LIGHT = "#DCFCE7"
TEXT_PRIMARY = "#111827"
TEXT_SECONDARY = "#6B7280"
BORDER = "#E5E7EB"

APP_NAME = "Enugu Waste Watch"


def _base_layout(content: str, app_name: str = APP_NAME) -> str:
    return f"""\
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{app_name}</title>
</head>
<body style="margin: 0; padding: 0; background-color: #F9FAFB; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;">
    <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%">
        <tr>
            <td align="center" style="padding: 32px 16px;">
                <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="560" style="max-width: 560px; width: 100%;">
                    <tr>
                        <td align="center" style="padding-bottom: 24px; font-size: 22px; font-weight: 700; color: {GREEN};">
                            {app_name}
                        </td>
                    </tr>
                    <tr>
                        <td style="background-color: #FFFFFF; border: 1px solid {BORDER}; border-radius: 10px; padding: 32px 28px; color: {TEXT_PRIMARY};">
                            {content}
                        </td>
                    </tr>
                    <tr>
                        <td align="center" style="padding-top: 24px; color: {TEXT_SECONDARY}; font-size: 12px; line-height: 1.5;">
                            Keeping Enugu clean, together.<br>
                            If you didn't expect this email, you can ignore it.
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>"""


def _button(url: str, label: str) -> str:
    return f"""\
<p style="text-align: center; margin: 28px 0;">
    <a href="{url}" target="_blank" style="display: inline-block; padding: 12px 28px; background-color: {GREEN}; color: #FFFFFF; font-weight: 600; text-decoration: none; border-radius: 8px;">{label}</a>
</p>"""


def welcome_email(name: str | None, verify_url: str) -> tuple[str, str, str]:
    """Sent after an email signup; carries the confirmation link."""
    greeting = f"Hi {escape(name)}," if name else "Hi there,"
    subject = f"Welcome to {APP_NAME}: confirm your email"
    html = _base_layout(
        f"""\
<p style="font-size: 16px;">{greeting}</p>
<p style="font-size: 15px; line-height: 1.6;">
    Thanks for joining {APP_NAME}. Confirm your email address to start reporting
    waste issues and receiving pickup reminders for your area.
</p>
{_button(verify_url, "Confirm email")}
<p style="font-size: 13px; color: {TEXT_SECONDARY};">This link expires in 24 hours.</p>"""
    )
    text = (
        f"{greeting}\n\n"
        f"Thanks for joining {APP_NAME}. Confirm your email address:\n{verify_url}\n\n"
        "This link expires in 24 hours.\n"
    )
    return subject, html, text


def verify_email(verify_url: str) -> tuple[str, str, str]:
    subject = f"Confirm your {APP_NAME} email"
    html = _base_layout(
        f"""\
<p style="font-size: 15px; line-height: 1.6;">Use the button below to confirm your email address.</p>
{_button(verify_url, "Confirm email")}"""
    )
    text = f"Confirm your email address:\n{verify_url}\n"
    return subject, html, text


def collection_reminder(name: str | None, area: str, pickup_time: str) -> tuple[str, str, str]:
    """Heads-up that a collection is scheduled for the recipient's area soon."""
    greeting = f"Hi {escape(name)}," if name else "Hi there,"
    subject = f"Waste collection in {area} on {pickup_time}"
    html = _base_layout(
        f"""\
<p style="font-size: 16px;">{greeting}</p>
<div style="background-color: {GREEN_LIGHT}; border-radius: 8px; padding: 16px; margin: 16px 0;">
    <strong>{escape(area)}</strong><br>
    Pickup scheduled for {escape(pickup_time)}
</div>
<p style="font-size: 15px; line-height: 1.6;">Please have your waste bagged and out before the truck arrives.</p>"""
    )
    text = (
        f"{greeting}\n\nWaste collection is scheduled for {area} on {pickup_time}.\n"
        "Please have your waste bagged and out before the truck arrives.\n"
    )
    return subject, html, text


def account_deactivated(name: str | None) -> tuple[str, str, str]:
    greeting = f"Hi {escape(name)}," if name else "Hi there,"
    subject = f"Your {APP_NAME} account has been deactivated"
    html = _base_layout(
        f"""\
<p style="font-size: 16px;">{greeting}</p>
<p style="font-size: 15px; line-height: 1.6;">
    An administrator has deactivated your account and signed out all of your sessions.
    Contact your local waste management office if you think this is a mistake.
</p>"""
    )
    text = (
        f"{greeting}\n\nAn administrator has deactivated your account and signed out all of your sessions.\n"
        "Contact your local waste management office if you think this is a mistake.\n"
    )
    return subject, html, text
