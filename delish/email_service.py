import html
import logging

import requests

from delish.config import Settings

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


def send_email(settings: Settings, to: str, subject: str, body_html: str) -> bool:
    """
    Send email via Resend. Never raises; failures are logged and reported as False.
    """
    if not settings.resend_api_key:
        logger.warning("email_not_configured")
        return False

    payload = {
        "from": settings.mail_from,
        "to": [to],
        "subject": subject,
        "html": body_html,
    }
    headers = {
        "Authorization": f"Bearer {settings.resend_api_key}",
        "Content-Type": "application/json",
    }

    try:
        response = requests.post(RESEND_API_URL, json=payload, headers=headers, timeout=10)
    except requests.RequestException:
        logger.exception("email_send_exception")
        return False

    if response.status_code >= 400:
        logger.error(
            "email_send_failed",
            extra={"status_code": response.status_code, "error": response.text[:500]},
        )
        return False

    logger.info("email_sent")
    return True


def send_unlock_email(settings: Settings, email: str, unlock_url: str, list_title: str) -> bool:
    title = html.escape(list_title)
    body = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h1 style="color: #333;">Your map is ready!</h1>
      <p>Thank you for your purchase! You can now access your curated map.</p>
      <div style="background: #f8f9fa; padding: 20px; border-radius: 8px; margin: 20px 0;">
        <h2 style="margin-top: 0;">{title}</h2>
        <a href="{html.escape(unlock_url)}" style="background: #007bff; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block;">
          Unlock Your Map
        </a>
      </div>
      <p style="color: #666; font-size: 14px;">
        This link will expire in {settings.unlock_token_minutes} minutes for security. If you need to
        access your map again, you can request a new link from the list page.
      </p>
    </div>
    """
    return send_email(settings, email, f"Your {list_title} is ready to unlock!", body)


def send_access_link_email(settings: Settings, email: str, access_url: str) -> bool:
    body = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h1 style="color: #333;">Access Your Maps</h1>
      <p>Click the link below to access your purchased maps:</p>
      <a href="{html.escape(access_url)}" style="background: #007bff; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block;">
        Access Your Maps
      </a>
      <p style="color: #666; font-size: 14px;">
        This link will expire in {settings.access_link_minutes} minutes for security.
      </p>
    </div>
    """
    return send_email(settings, email, "Access your purchased maps", body)
