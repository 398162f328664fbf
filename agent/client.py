"""
HTTP client module for Agent - handles communication with the Controller.

This module fetches the route intents targeting the local node and reports
per-node intent status back to the Controller.
"""

import logging
import time
from typing import Any, Callable, List, Optional

import requests
from pydantic import ValidationError

from models import IntentList, NodeRouteStatus, RouteIntent


logger = logging.getLogger(__name__)


class ControllerUnavailable(Exception):
    """Raised when all retry attempts against the Controller have been exhausted."""
    pass


class ControllerClient:
    """
    HTTP client for communicating with the Controller.

    Implements the intent source side of the watch mechanism and the status
    sink used by the Reconciler. Fetches use exponential backoff retry.

    Attributes:
        controller_url: Base URL of the Controller (e.g., "http://10.0.0.10:8000")
        timeout: HTTP request timeout in seconds
        retry_attempts: Maximum number of retry attempts
        retry_backoff: List of backoff delays in seconds (e.g., [1, 2, 4])
    """

    def __init__(
        self,
        controller_url: str,
        timeout: float = 5,
        retry_attempts: int = 3,
        retry_backoff: Optional[List[float]] = None
    ):
        """
        Initialize Controller client.

        Args:
            controller_url: Base URL of the Controller
            timeout: HTTP request timeout in seconds (default: 5)
            retry_attempts: Maximum retry attempts (default: 3)
            retry_backoff: Backoff delays in seconds (default: [1, 2, 4])
        """
        self.controller_url = controller_url.rstrip('/')
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff or [1, 2, 4]

        logger.info(f"ControllerClient initialized: url={controller_url}, "
                    f"timeout={timeout}s, retry_attempts={retry_attempts}")

    def _retry_with_backoff(self, operation: Callable[[], Any], operation_name: str) -> Any:
        """
        Execute an operation with exponential backoff retry logic.

        Args:
            operation: Callable returning a result, or None on failure
            operation_name: Name of operation for logging

        Returns:
            Result from successful operation

        Raises:
            ControllerUnavailable: If all retry attempts fail
        """
        for attempt in range(self.retry_attempts):
            try:
                result = operation()
                if result is not None:
                    return result

                logger.warning(f"{operation_name} failed (attempt {attempt + 1}/{self.retry_attempts})")

            except requests.exceptions.RequestException as e:
                logger.warning(f"{operation_name} raised exception "
                               f"(attempt {attempt + 1}/{self.retry_attempts}): {e}")

            # Apply backoff delay before next retry (except after last attempt)
            if attempt < self.retry_attempts - 1:
                delay = self.retry_backoff[min(attempt, len(self.retry_backoff) - 1)]
                logger.debug(f"Backing off for {delay}s before retry")
                time.sleep(delay)

        logger.error(f"{operation_name} failed after {self.retry_attempts} attempts")
        raise ControllerUnavailable(f"{operation_name} failed after {self.retry_attempts} attempts")

    def fetch_intents(self, hostname: str) -> Optional[List[RouteIntent]]:
        """
        Fetch intents targeting ``hostname`` via GET /api/v1/intents.

        Args:
            hostname: Local node name

        Returns:
            List of RouteIntent objects, or None if the request failed
        """
        endpoint = f"{self.controller_url}/api/v1/intents"

        try:
            response = requests.get(
                endpoint,
                params={"node": hostname},
                timeout=self.timeout
            )

            if response.status_code != 200:
                logger.error(f"Controller returned status {response.status_code}: {response.text}")
                return None

            intent_list = IntentList(**response.json())
            logger.debug(f"Fetched {len(intent_list.intents)} intents from Controller")
            return intent_list.intents

        except requests.exceptions.Timeout:
            logger.error(f"Timeout fetching intents from {endpoint}")
            return None
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Connection error fetching intents: {e}")
            return None
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error fetching intents: {e}")
            return None
        except (ValueError, ValidationError) as e:
            logger.error(f"Invalid intent listing from Controller: {e}")
            return None

    def fetch_intents_with_retry(self, hostname: str) -> Optional[List[RouteIntent]]:
        """
        Fetch intents with exponential backoff retry.

        Returns:
            List of RouteIntent objects, or None if all retries fail
        """
        try:
            return self._retry_with_backoff(lambda: self.fetch_intents(hostname), "fetch_intents")
        except ControllerUnavailable:
            return None

    def report_status(self, intent_name: str, status: NodeRouteStatus) -> bool:
        """
        Report a node's status for an intent via PUT /api/v1/intents/{name}/status.

        Returns:
            True if the Controller accepted the status, False otherwise
        """
        endpoint = f"{self.controller_url}/api/v1/intents/{intent_name}/status"

        try:
            response = requests.put(
                endpoint,
                json=status.model_dump(),
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to report status for {intent_name}: {e}")
            return False

        if response.status_code == 404:
            logger.debug(f"Intent {intent_name} no longer exists; status dropped")
            return False
        if response.status_code != 200:
            logger.error(f"Controller returned status {response.status_code}: {response.text}")
            return False
        return True

    def clear_status(self, intent_name: str, hostname: str) -> bool:
        """
        Clear this node's status via DELETE /api/v1/intents/{name}/status/{node}.

        Returns:
            True if the request succeeded, False otherwise
        """
        endpoint = f"{self.controller_url}/api/v1/intents/{intent_name}/status/{hostname}"

        try:
            response = requests.delete(endpoint, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to clear status for {intent_name}: {e}")
            return False
        return response.status_code == 200
