"""Transactional email (Mailgun preferred, SendGrid fallback). Sending is best effort and never raises."""
import html
import logging

import httpx

from app.config import Settings, get_settings

log = logging.getLogger("uvicorn.error")

MAILGUN_US_BASE = "https://api.mailgun.net"
MAILGUN_EU_BASE = "https://api.eu.mailgun.net"


class Mailer:
    def __init__(self, settings: Settings | None = None, http_client: httpx.Client | None = None):
        self.settings = settings or get_settings()
        self._http = http_client

    def send_email(self, to_email: str, subject: str, html_content: str, text_content: str | None = None) -> bool:
        """Send via Mailgun when configured, else SendGrid. Returns True if the relay accepted the message."""
        s = self.settings
        if s.mailgun_api_key and s.mailgun_domain:
            log.info("[Email] Calling Mailgun API: to=%s subject=%s domain=%s", to_email, subject, s.mailgun_domain)
            return self._send_mailgun(to_email, subject, html_content, text_content)
        if s.sendgrid_api_key:
            return self._send_sendgrid(to_email, subject, html_content, text_content)
        log.warning(
            "[Email] NOT SENT: to=%s subject=%s. Set MAILGUN_API_KEY and MAILGUN_DOMAIN (or SENDGRID_API_KEY) in .env and restart.",
            to_email,
            subject,
        )
        return False

    def _post(self, url: str, data: dict) -> httpx.Response:
        auth = ("api", self.settings.mailgun_api_key)
        if self._http is not None:
            return self._http.post(url, auth=auth, data=data)
        with httpx.Client(timeout=self.settings.http_timeout_seconds) as client:
            return client.post(url, auth=auth, data=data)

    def _send_mailgun(self, to_email: str, subject: str, html_content: str, text_content: str | None) -> bool:
        s = self.settings
        try:
            base = (s.mailgun_base_url or MAILGUN_US_BASE).strip().rstrip("/")
            domain = s.mailgun_domain.strip().lower()
            from_addr = s.mailgun_from_email.strip()
            from_domain = from_addr.split("@")[-1].lower() if "@" in from_addr else ""
            if domain and from_domain != domain:
                # Mailgun drops mail whose sender is not on the sending domain
                from_addr = f"noreply@{domain}"
                log.info("[Mailgun] Using from=%s (must match domain %s for delivery)", from_addr, domain)
            data = {
                "from": f"{s.mailgun_from_name} <{from_addr}>",
                "to": to_email,
                "subject": subject,
                "text": text_content or "",
                "html": html_content or "",
            }
            r = self._post(f"{base}/v3/{domain}/messages", data)
            if 200 <= r.status_code < 300:
                log.info("[Mailgun] API success: to=%s status=%s", to_email, r.status_code)
                return True
            if r.status_code == 401 and base == MAILGUN_US_BASE:
                log.info("[Mailgun] 401 with US endpoint. Retrying with EU endpoint...")
                r2 = self._post(f"{MAILGUN_EU_BASE}/v3/{domain}/messages", data)
                if 200 <= r2.status_code < 300:
                    log.info("[Mailgun] API success (EU): to=%s", to_email)
                    return True
                log.warning("[Mailgun] EU request failed: status=%s body=%s", r2.status_code, r2.text[:500])
                return False
            log.warning("[Mailgun] API failed: status=%s to=%s body=%s", r.status_code, to_email, r.text[:500])
            return False
        except Exception as e:
            log.warning("[Mailgun] Exception: to=%s error=%s: %s", to_email, type(e).__name__, e)
            return False

    def _send_sendgrid(self, to_email: str, subject: str, html_content: str, text_content: str | None) -> bool:
        s = self.settings
        try:
            from sendgrid import SendGridAPIClient
            from sendgrid.helpers.mail import Mail

            message = Mail(
                from_email=(s.sendgrid_from_email, s.sendgrid_from_name),
                to_emails=to_email,
                subject=subject,
                html_content=html_content,
                plain_text_content=text_content or "",
            )
            SendGridAPIClient(s.sendgrid_api_key).send(message)
            return True
        except Exception as e:
            log.warning("[SendGrid] Exception: to=%s error=%s: %s", to_email, type(e).__name__, e)
            return False

    def send_signup_code_email(self, to_email: str, code: str, name: str | None = None, expires_minutes: int = 10) -> bool:
        """Email the 6-digit code that completes a Google-verified signup."""
        display_name = html.escape((name or "").strip() or "there")
        safe_email = html.escape(to_email)
        subject = "Complete Your EduRetrieve Registration"
        text_content = (
            f"Hi {(name or '').strip() or 'there'}, your EduRetrieve verification code is: {code}. "
            f"It expires in {expires_minutes} minutes."
        )
        html_content = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <div style="background-color: #007bff; color: white; padding: 20px; text-align: center;">
        <h1>EduRetrieve</h1>
      </div>
      <div style="padding: 20px; background-color: #f8f9fa;">
        <h2>Complete Your Registration</h2>
        <p>Hi {display_name}!</p>
        <p>Your Google account has been verified successfully. To complete your EduRetrieve registration, please enter this verification code:</p>
        <div style="text-align: center; margin: 30px 0;">
          <div style="background-color: #007bff; color: white; padding: 15px 30px; border-radius: 8px; display: inline-block; font-size: 24px; font-weight: bold; letter-spacing: 3px;">
            {code}
          </div>
        </div>
        <p><strong>This code will expire in {expires_minutes} minutes.</strong></p>
        <p>Google Account Details:</p>
        <ul>
          <li>Email: {safe_email}</li>
          <li>Name: {display_name}</li>
        </ul>
      </div>
    </div>
    """
        log.info("[Verification] Sending code to %s", to_email)
        ok = self.send_email(to_email, subject, html_content, text_content=text_content)
        if ok:
            log.info("[Verification] Sent successfully to %s", to_email)
        return ok
