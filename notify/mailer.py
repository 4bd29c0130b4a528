# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Email Notifier - Sends error reports through Microsoft Graph sendMail
"""
import logging
import traceback
from typing import Optional

import requests

from cal_ops.graph_http import GRAPH_BASE_URL, graph_request
from config import SyncConfig
from utils.timezone import format_display_time, utc_now

logger = logging.getLogger(__name__)


class EmailNotifier:
    """Fire-and-forget error channel; delivery failures are only logged"""

    def __init__(self, config: SyncConfig, auth, session: Optional[requests.Session] = None):
        self.config = config
        self.auth = auth
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.config.notification_email and self.config.notification_sender)

    def notify(self, error: Exception, record_id: Optional[str] = None) -> bool:
        """Report an error; never raises"""
        subject = "Toggl calendar sync - Error"
        lines = [
            "An error occurred during Toggl calendar sync:",
            "",
            f"Time: {format_display_time(utc_now(), self.config.display_timezone)}",
            f"Error: {type(error).__name__}: {error}",
        ]
        if record_id:
            lines.append(f"Record ID: {record_id}")
        details = ''.join(traceback.format_exception(type(error), error, error.__traceback__))
        if error.__traceback__ is not None:
            lines += ["", details]
        return self._send(subject, "\n".join(lines))

    def send_test(self) -> bool:
        """Send a test message to confirm the notification channel works"""
        body = (
            "This is a test message from Toggl calendar sync.\n\n"
            "If you received it, error notifications are working."
        )
        if not self.enabled:
            logger.error("Notification email address is not configured.")
            return False
        sent = self._send("Toggl calendar sync - Test", body)
        if sent:
            logger.info(f"Test email sent to: {self.config.notification_email}")
        return sent

    def _send(self, subject: str, body: str) -> bool:
        if not self.enabled:
            logger.warning(f"Notification skipped (no address configured): {subject}")
            return False

        payload = {
            'message': {
                'subject': subject,
                'body': {'contentType': 'Text', 'content': body},
                'toRecipients': [{'emailAddress': {'address': self.config.notification_email}}],
            },
            'saveToSentItems': False
        }
        url = f"{GRAPH_BASE_URL}/users/{self.config.notification_sender}/sendMail"

        try:
            response = graph_request(
                self.auth, self.session, 'POST', url,
                timeout=self.config.http_timeout_seconds, json=payload
            )
        except Exception as e:
            logger.error(f"Failed to send notification email: {type(e).__name__}: {e}")
            return False

        if response.status_code not in (200, 202):
            logger.error(f"Failed to send notification email: {response.status_code} - {response.text[:200]}")
            return False
        return True
