"""Branded transactional emails (HTML + plain text)"""

from html import escape
from typing import NamedTuple

BRAND = "The Connection"
NAVY = "#1a2a4a"
CREAM = "#f2eeea"


class EmailContent(NamedTuple):
    subject: str
    html: str
    text: str


def _layout(heading: str, body_html: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <meta http-equiv="Content-Type" content="text/html; charset=UTF-8">
</head>
<body style="margin:0;padding:0;background-color:#f0f1f5;">
  <table align="center" width="100%" cellpadding="0" cellspacing="0"
         style="max-width:600px;margin:0 auto;background-color:{CREAM};">
    <tr>
      <td style="background-color:{NAVY};padding:20px;text-align:center;">
        <h1 style="color:#ffffff;margin:0;font-family:'Times New Roman',Times,serif;font-size:24px;">{BRAND}</h1>
      </td>
    </tr>
    <tr>
      <td style="padding:30px 20px;font-family:Helvetica,Arial,sans-serif;color:#1c1c1e;
                 font-size:16px;line-height:1.5;text-align:center;">
        <div style="font-size:28px;font-family:'Times New Roman',Times,serif;color:{NAVY};padding-bottom:24px;">
          {heading}
        </div>
        {body_html}
      </td>
    </tr>
  </table>
</body>
</html>"""


def _button(link: str, label: str) -> str:
    link = escape(link, quote=True)
    return (
        f'<p style="padding:20px 0;"><a href="{link}" style="display:inline-block;'
        f'background-color:{NAVY};color:#ffffff;padding:14px 28px;text-decoration:none;'
        f'border-radius:6px;font-weight:bold;">{label}</a></p>'
        f'<p style="color:#666;font-size:14px;">If the button does not work, copy this URL '
        f'into your browser:<br><a href="{link}" style="word-break:break-all;">{link}</a></p>'
    )


def verification_email(link: str) -> EmailContent:
    body = (
        "<p>Welcome to The Connection! Please verify your email address to complete "
        "your registration and join our community.</p>"
        + _button(link, "Verify Email &amp; Login")
        + '<p style="font-size:13px;">If you did not create an account, you can ignore this email.</p>'
    )
    text = (
        "Welcome to The Connection!\n\n"
        f"Verify your email address to finish signing up:\n{link}\n\n"
        "This link expires in 24 hours. If you did not create an account, ignore this email."
    )
    return EmailContent(
        subject="Verify your email for The Connection",
        html=_layout("Your community is waiting for you...", body),
        text=text,
    )


def magic_code_email(code: str, ttl_minutes: int) -> EmailContent:
    body = (
        "<p>Use this code to sign in:</p>"
        f'<p style="font-size:36px;letter-spacing:8px;font-weight:bold;color:{NAVY};">{escape(code)}</p>'
        f"<p>The code expires in {ttl_minutes} minutes and can be used once.</p>"
    )
    text = (
        f"Your sign-in code for The Connection is {code}\n\n"
        f"It expires in {ttl_minutes} minutes and can be used once."
    )
    return EmailContent(
        subject=f"Your sign-in code: {code}",
        html=_layout("Sign in to The Connection", body),
        text=text,
    )


def password_reset_email(link: str, ttl_minutes: int) -> EmailContent:
    body = (
        "<p>We received a request to reset your password.</p>"
        + _button(link, "Reset Password")
        + f'<p style="font-size:13px;">This link expires in {ttl_minutes} minutes. '
        "If you did not ask for a reset, no action is needed.</p>"
    )
    text = (
        "We received a request to reset your password for The Connection.\n\n"
        f"Reset it here:\n{link}\n\n"
        f"This link expires in {ttl_minutes} minutes. If you did not ask for a reset, ignore this email."
    )
    return EmailContent(
        subject="Reset your password for The Connection",
        html=_layout("Reset your password", body),
        text=text,
    )


def phone_code_message(code: str) -> str:
    return f"Your The Connection verification code is: {code}"
