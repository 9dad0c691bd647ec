"""
Completion webhook.

Posts the run summary as JSON to a configured URL. Delivery is best
effort: a failed post is logged and never changes the run's outcome.
"""

from typing import Any, Dict

import requests

from core.config_loader import NotificationConfig
from core.models import RunOutcome
from lib.logger import get_logger


def outcome_payload(outcome: RunOutcome) -> Dict[str, Any]:
    """JSON-serializable summary of a run."""
    return {
        "instance": outcome.instance,
        "kind": outcome.kind.value,
        "status": outcome.status,
        "exit_code": int(outcome.exit_code),
        "dry_run": outcome.dry_run,
        "backup_errors": [r.code for r in outcome.backup_errors],
        "retention_errors": [r.code for r in outcome.retention_errors],
        "engine_exit_code": outcome.engine_exit_code,
        "retention_exit_code": outcome.retention_exit_code,
        "artifacts": [str(p) for p in outcome.artifacts],
        "message": outcome.message,
        "started_at": outcome.started_at.isoformat(),
        "finished_at": outcome.finished_at.isoformat() if outcome.finished_at else None,
        "summary": outcome.summary_line(),
    }


class WebhookNotifier:
    """Sends run summaries to a webhook."""

    def __init__(self, config: NotificationConfig):
        self.config = config
        self.logger = get_logger()

    def notify(self, outcome: RunOutcome) -> bool:
        """
        Post the outcome.

        Returns:
            True if the webhook accepted the payload, False otherwise
            (including when notifications are disabled)
        """
        if not self.config.enabled:
            self.logger.debug("Notifications disabled, not sending run summary")
            return False

        try:
            response = requests.post(
                self.config.url,
                json=outcome_payload(outcome),
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            self.logger.warning(f"Failed to send run summary to {self.config.url}: {e}")
            return False

        self.logger.debug(f"Run summary sent to {self.config.url} ({response.status_code})")
        return True
