"""
Brevo transactional email client.

Posts to the Brevo v3 /smtp/email endpoint with the account API key.
Used for one-time login codes; other flows can send arbitrary HTML mail.
"""

import json
import logging
from html import escape

import requests

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.brevo.com/v3"


class EmailDeliveryError(Exception):
    """Raised when Brevo rejects or cannot receive a send request."""


class BrevoEmailClient:
    """Send transactional email through Brevo."""

    def __init__(
        self,
        api_key: str,
        sender_email: str,
        sender_name: str,
        base_url: str = DEFAULT_BASE_URL,
    ):
        """
        Initialize with Brevo credentials.

        Raises:
            ValueError: If api_key or sender_email is empty
        """
        if not api_key:
            raise ValueError("api_key is required")
        if not sender_email:
            raise ValueError("sender_email is required")

        self.api_key = api_key
        self.sender = {"email": sender_email, "name": sender_name}
        self.base_url = base_url.rstrip("/")

    def _post(self, endpoint: str, payload: dict) -> dict:
        """
        POST JSON to a Brevo endpoint.

        Raises:
            EmailDeliveryError: On any failure
        """
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "api-key": self.api_key,
        }

        try:
            response = requests.post(
                f"{self.base_url}{endpoint}",
                data=json.dumps(payload),
                headers=headers,
                timeout=10,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Brevo connection failed: {e}")
            raise EmailDeliveryError(f"Connection failed: {e}")

        if not response.ok:
            logger.error(f"Brevo API error {response.status_code}: {response.text}")
            raise EmailDeliveryError(f"Brevo API error: {response.text}")

        try:
            return response.json()
        except json.JSONDecodeError:
            return {}

    def send_email(
        self,
        to: str,
        subject: str,
        html: str,
        text: str | None = None,
        to_name: str | None = None,
    ) -> str | None:
        """
        Send one transactional email.

        Returns:
            Brevo message id, if the API returned one.

        Raises:
            EmailDeliveryError: On API failure
        """
        recipient = {"email": to}
        if to_name:
            recipient["name"] = to_name

        payload = {
            "sender": self.sender,
            "to": [recipient],
            "subject": subject,
            "htmlContent": html,
        }
        if text:
            payload["textContent"] = text

        result = self._post("/smtp/email", payload)
        logger.info(f"Email sent to {to}: {subject}")
        return result.get("messageId")

    def send_otp(self, email: str, code: str, expiry_minutes: int = 10, name: str | None = None) -> None:
        """
        Send a verification code email.

        Raises:
            EmailDeliveryError: On API failure
        """
        club = escape(self.sender["name"])
        html = f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <div style="text-align: center; margin-bottom: 30px;">
          <h1 style="color: #7c3aed; margin: 0;">{club}</h1>
          <p style="color: #6b7280; margin: 5px 0;">Your verification code</p>
        </div>
        <div style="background: #7c3aed; padding: 30px; border-radius: 12px; text-align: center;">
          <span style="font-size: 32px; font-weight: bold; color: white; letter-spacing: 8px;">{escape(code)}</span>
          <p style="color: white; margin: 10px 0 0 0; font-size: 14px;">This code expires in {expiry_minutes} minutes</p>
        </div>
        <p style="color: #6b7280; font-size: 14px; text-align: center; margin-top: 30px;">
          If you didn't request this code, please ignore this email.
        </p>
      </div>
    """
        text = (
            f"Your {self.sender['name']} verification code is: {code}. "
            f"This code expires in {expiry_minutes} minutes."
        )
        self.send_email(
            to=email,
            subject=f"Your {self.sender['name']} Verification Code",
            html=html,
            text=text,
            to_name=name,
        )
