"""Mailpool directory API client with retry logic and error handling.

The directory lists the managed mailboxes and hands out per-mailbox IMAP/SMTP
credentials. Transient failures (5xx, 429, timeouts, connection errors) are
retried with jittered backoff; everything else surfaces as DirectoryError.

Usage:
    from mailpool_mcp.directory.client import MailpoolClient

    client = MailpoolClient.from_config(config)
    for mailbox in client.list_mailboxes():
        details = client.get_mailbox(mailbox.id)
"""

from __future__ import annotations

import random
import time
from typing import TYPE_CHECKING, Any

import requests

from mailpool_mcp.config import require_directory_key
from mailpool_mcp.core.errors import DirectoryError
from mailpool_mcp.core.logging import get_logger
from mailpool_mcp.directory.models import Mailbox, MailboxDetails

if TYPE_CHECKING:
    from mailpool_mcp.config_schema import AppConfig

logger = get_logger(__name__)

DEFAULT_API_BASE = "https://app.mailpool.io/v1/api"
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAYS = [1.0, 2.0, 4.0]


class MailpoolClient:
    """Mailpool REST API client.

    Attributes:
        api_base: API base URL
        max_retries: Maximum number of retry attempts for transient errors
        retry_delays: Delay (seconds) before each retry
        page_limit: Mailboxes requested per listing
    """

    def __init__(
        self,
        api_key: str,
        api_base: str = DEFAULT_API_BASE,
        page_limit: int = 50,
        timeout: float = 30.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delays: list[float] | None = None,
        session: requests.Session | None = None,
    ):
        self._api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.page_limit = page_limit
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delays = retry_delays or DEFAULT_RETRY_DELAYS
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config: AppConfig) -> MailpoolClient:
        """Build a client from config.

        Raises:
            ConfigurationError: If MAILPOOL_API_KEY is not configured
        """
        return cls(
            api_key=require_directory_key(config),
            api_base=config.directory.api_base,
            page_limit=config.directory.page_limit,
            timeout=config.directory.timeout_seconds,
        )

    def _get_headers(self) -> dict[str, str]:
        return {
            "X-Api-Authorization": self._api_key,
            "Accept": "application/json",
        }

    def _should_retry(self, response: requests.Response, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        return response.status_code == 429 or 500 <= response.status_code < 600

    def _get_retry_delay(self, response: requests.Response | None, attempt: int) -> float:
        """Backoff delay with ±20% jitter; honours Retry-After on 429."""
        base_delay = self.retry_delays[min(attempt, len(self.retry_delays) - 1)]
        if response is not None and response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                try:
                    base_delay = float(retry_after)
                except ValueError:
                    pass
        jitter = base_delay * 0.2 * (2 * random.random() - 1)
        return base_delay + jitter

    def _raise_for_response(self, response: requests.Response, endpoint: str) -> None:
        logger.error(
            "directory_api_error",
            endpoint=endpoint,
            status_code=response.status_code,
            reason=response.reason,
        )
        if response.status_code in (401, 403):
            raise DirectoryError(
                f"Mailpool API rejected the API key ({response.status_code} {response.reason}). "
                "Check MAILPOOL_API_KEY.",
                status_code=response.status_code,
            )
        if response.status_code == 404:
            raise DirectoryError(
                f"Mailpool API resource not found: {endpoint}",
                status_code=404,
            )
        raise DirectoryError(
            f"Mailpool API error: {response.status_code} {response.reason}",
            status_code=response.status_code,
        )

    def request(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """GET an endpoint with retry logic and return the parsed JSON.

        Raises:
            DirectoryError: For API errors or exhausted retries
        """
        url = f"{self.api_base}/{endpoint.lstrip('/')}"

        for attempt in range(self.max_retries + 1):
            try:
                response = self.session.get(
                    url,
                    headers=self._get_headers(),
                    params=params,
                    timeout=self.timeout,
                )
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                if attempt < self.max_retries:
                    delay = self._get_retry_delay(None, attempt)
                    logger.warning(
                        "directory_request_retry",
                        endpoint=endpoint,
                        attempt=attempt + 1,
                        error=str(e),
                        delay=delay,
                    )
                    time.sleep(delay)
                    continue
                raise DirectoryError(
                    f"Could not reach Mailpool API at {self.api_base}: {e}"
                ) from e

            if response.status_code < 400:
                try:
                    return response.json()
                except ValueError as e:
                    raise DirectoryError(
                        f"Mailpool API returned invalid JSON for {endpoint}",
                        status_code=response.status_code,
                    ) from e

            if self._should_retry(response, attempt):
                delay = self._get_retry_delay(response, attempt)
                logger.warning(
                    "directory_request_retry",
                    endpoint=endpoint,
                    status_code=response.status_code,
                    attempt=attempt + 1,
                    delay=delay,
                )
                time.sleep(delay)
                continue

            self._raise_for_response(response, endpoint)

        raise DirectoryError(f"Request to {endpoint} failed after {self.max_retries} retries")

    def list_mailboxes(self) -> list[Mailbox]:
        """List mailboxes managed by this API key."""
        payload = self.request("mailboxes", params={"limit": self.page_limit, "offset": 0})
        data = payload.get("data", []) if isinstance(payload, dict) else []
        mailboxes = [Mailbox.from_api(item) for item in data]
        logger.debug("mailboxes_listed", count=len(mailboxes))
        return mailboxes

    def get_mailbox(self, mailbox_id: int) -> MailboxDetails:
        """Fetch full mailbox details including IMAP/SMTP credentials."""
        return MailboxDetails.from_api(self.request(f"mailboxes/{mailbox_id}"))

    def get_mailbox_by_email(self, email: str) -> MailboxDetails:
        """Look up a mailbox by address (case-insensitive).

        Raises:
            DirectoryError: If no mailbox has this address
        """
        wanted = email.strip().lower()
        for mailbox in self.list_mailboxes():
            if mailbox.email.lower() == wanted:
                return self.get_mailbox(mailbox.id)
        raise DirectoryError(
            f"Mailbox not found for email: {email}. "
            "Use list_email_accounts to see the available addresses.",
            status_code=404,
        )
