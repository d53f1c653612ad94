import asyncio
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

from config.env import (
    CLIENT_URL,
    EMAIL_HOST,
    EMAIL_PORT,
    EMAIL_USER,
    EMAIL_PASS,
    EMAIL_FROM_NAME,
)

logger = logging.getLogger(__name__)


def _require_smtp_config():
    if not EMAIL_HOST or not EMAIL_USER or not EMAIL_PASS:
        raise RuntimeError("SMTP is not configured")


def _format_idr(amount) -> str:
    try:
        return "Rp " + f"{int(round(float(amount))):,}".replace(",", ".")
    except (TypeError, ValueError):
        return f"Rp {amount}"


def _send(to: str, subject: str, html: str, text: str) -> None:
    _require_smtp_config()

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = formataddr((EMAIL_FROM_NAME, EMAIL_USER))
    msg["To"] = to
    msg.set_content(text)
    msg.add_alternative(html, subtype="html")

    # 465 is implicit TLS, everything else upgrades with STARTTLS
    if EMAIL_PORT == 465:
        with smtplib.SMTP_SSL(EMAIL_HOST, EMAIL_PORT, timeout=30) as smtp:
            smtp.login(EMAIL_USER, EMAIL_PASS)
            smtp.send_message(msg)
    else:
        with smtplib.SMTP(EMAIL_HOST, EMAIL_PORT, timeout=30) as smtp:
            smtp.starttls()
            smtp.login(EMAIL_USER, EMAIL_PASS)
            smtp.send_message(msg)

    logger.info("EMAIL_SENT to=%s subject=%s", to, subject)


async def send_email(to: str, subject: str, html: str, text: str) -> None:
    await asyncio.to_thread(_send, to, subject, html, text)


# =====================================================
# TEMPLATES
# =====================================================

async def send_purchase_delivery(
    to: str,
    customer_name: str,
    order_number: str,
    product_name: str,
    total_amount,
    download_url: str,
    source_code_available: bool = False,
):
    subject = f"Your purchase is ready - Order #{order_number}"
    if source_code_available:
        access = f'<p><a href="{download_url}">Download the source code</a></p>'
        access_text = f"Download the source code: {download_url}"
    else:
        access = f'<p>Your files are being prepared. Track your order at <a href="{download_url}">{download_url}</a>.</p>'
        access_text = f"Your files are being prepared. Track your order at {download_url}"

    html = f"""
    <h2>Thank you for your purchase, {customer_name}!</h2>
    <p>Order <strong>#{order_number}</strong></p>
    <p>Product: {product_name}<br>Total: {_format_idr(total_amount)}</p>
    {access}
    """
    text = (
        f"Thank you for your purchase, {customer_name}!\n"
        f"Order #{order_number}\nProduct: {product_name}\n"
        f"Total: {_format_idr(total_amount)}\n{access_text}\n"
    )
    await send_email(to, subject, html, text)


async def send_payment_success(to: str, username: str, transaction_id: str, amount):
    subject = "Payment confirmed"
    html = f"""
    <h2>Hi {username},</h2>
    <p>We received your payment of <strong>{_format_idr(amount)}</strong>.</p>
    <p>Transaction ID: {transaction_id}</p>
    """
    text = f"Hi {username},\nWe received your payment of {_format_idr(amount)}.\nTransaction ID: {transaction_id}\n"
    await send_email(to, subject, html, text)


async def send_payment_expired(
    to: str,
    username: str,
    transaction_id: str,
    order_id: str | None,
    amount,
):
    subject = "Transaction cancelled - payment time expired"
    retry_url = f"{CLIENT_URL}/order/{order_id}" if order_id else CLIENT_URL
    html = f"""
    <h2>Hi {username},</h2>
    <p>Transaction <strong>{transaction_id}</strong> for {_format_idr(amount)}
    was cancelled because no payment was received within the time limit.</p>
    <p><a href="{retry_url}">Try again</a></p>
    """
    text = (
        f"Hi {username},\nTransaction {transaction_id} for {_format_idr(amount)} "
        f"was cancelled because no payment was received within the time limit.\n"
        f"Try again: {retry_url}\n"
    )
    await send_email(to, subject, html, text)


async def send_reset_password(to: str, username: str, reset_url: str, minutes: int):
    subject = "Password reset request"
    html = f"""
    <h2>Hi {username},</h2>
    <p>Use the link below to reset your password. It expires in {minutes} minutes.</p>
    <p><a href="{reset_url}">{reset_url}</a></p>
    <p>If you did not request this, you can ignore this email.</p>
    """
    text = (
        f"Hi {username},\nReset your password: {reset_url}\n"
        f"The link expires in {minutes} minutes.\n"
    )
    await send_email(to, subject, html, text)
