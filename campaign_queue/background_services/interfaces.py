"""Collaborator contracts used by the step engine.

Every failure is reported as ``ServiceError`` with a ``ServiceErrorCode``.
"""

from typing import Any, Dict, List, Protocol


class MailSender(Protocol):
    def send(self, address: str, body: str, idempotency_key: str) -> str:
        """Send ``body`` to ``address``; returns the provider message id.

        Repeating a key returns the original message id without sending again.
        """


class CrmClient(Protocol):
    def query(self, criteria: Dict[str, Any]) -> List[Dict[str, Any]]:
        ...

    def record_action(self, email: str, action: str, idempotency_key: str) -> Dict[str, Any]:
        ...


class SentimentAnalyzer(Protocol):
    def analyze(self, text: str) -> str:
        """Return "positive", "negative" or "neutral"."""
