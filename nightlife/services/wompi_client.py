from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

import requests

from nightlife.config import Config


class WompiClient:
    """Thin wrapper over the Wompi REST API, used to poll transaction status."""

    def __init__(
        self,
        base_url: str = Config.WOMPI_API_URL,
        private_key: str = Config.WOMPI_PRIVATE_KEY,
        timeout: float = Config.WOMPI_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.private_key = private_key
        self.timeout = timeout
        self.http = session or requests.Session()
        self.logger = logging.getLogger(__name__)

    def get_transaction(self, transaction_id: str) -> Tuple[bool, str, Optional[Dict[str, Any]]]:
        """
        Fetch a transaction by provider id.
        Returns (success flag, message, ``data`` object of the response or None).
        """
        headers = {"Content-Type": "application/json"}
        if self.private_key:
            headers["Authorization"] = f"Bearer {self.private_key}"

        try:
            response = self.http.get(
                f"{self.base_url}/transactions/{transaction_id}",
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            self.logger.error("Wompi request failed for %s: %s", transaction_id, exc)
            return False, "Payment provider unreachable", None

        if response.status_code != 200:
            self.logger.error(
                "Wompi returned status %s for transaction %s",
                response.status_code,
                transaction_id,
            )
            return False, f"Payment provider returned {response.status_code}", None

        try:
            body = response.json()
        except ValueError:
            self.logger.error("Wompi returned a non-JSON body for %s", transaction_id)
            return False, "Malformed provider response", None

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            return False, "Malformed provider response", None
        return True, "ok", data
