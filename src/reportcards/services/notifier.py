import logging
from typing import Any, Dict, List, Optional

import requests
from requests import RequestException

from reportcards.config.settings import Settings, settings

logger = logging.getLogger(__name__)


class NotifierError(Exception):
    pass


class WorkflowNotifier:
    """Posts workflow notifications to the school's notification endpoint."""

    def __init__(self, url: str, timeout: float = 15) -> None:
        self.url = url.strip()
        self.timeout = timeout

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "WorkflowNotifier":
        return cls(config.notify_url, config.notify_timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def send(
        self,
        title: str,
        message: str,
        *,
        audience: Optional[List[str]] = None,
        kind: str = "info",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        payload = {
            "title": title,
            "message": message,
            "audience": audience or ["admin", "super-admin"],
            "category": "academic",
            "type": kind,
            "metadata": metadata or {},
        }
        if not self.enabled:
            logger.debug("Notification not sent (no endpoint configured): %s", title)
            return
        try:
            res = requests.post(self.url, json=payload, timeout=self.timeout)
        except RequestException as exc:
            raise NotifierError("NOTIFICATION_SERVICE_UNAVAILABLE") from exc
        if res.status_code >= 400:
            raise NotifierError(f"Notification endpoint rejected '{title}' with status {res.status_code}")

    def broadcast(self, title: str, message: str, **kwargs: Any) -> bool:
        try:
            self.send(title, message, **kwargs)
        except NotifierError as exc:
            logger.warning("Failed to broadcast notification '%s': %s", title, exc)
            return False
        return True
