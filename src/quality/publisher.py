import logging
import time
from typing import Any, Dict, List

import requests

logger = logging.getLogger(__name__)


class ReportPublisher:
    """Delivers the per-process attribution report to a webhook."""

    def __init__(self, config: Dict[str, Any]):
        self.webhook_url = config['webhook_url']
        self.api_key = config.get('api_key', '')
        self.max_retries = config.get('max_retries', 3)
        self.retry_delay = config.get('retry_delay', 1)
        self.timeout = config.get('timeout', 10)

        api_key_status = "configured" if self.api_key else "not configured"
        logger.info(f"Report publisher initialized (webhook: {self.webhook_url}, API key: {api_key_status})")

    def publish(self, processes: List[Dict[str, Any]], summary: Dict[str, Any]) -> bool:
        """
        Sends the report with retry.

        Args:
            processes: One entry per logged process, in logged order
            summary: Aggregate evaluation counters

        Returns:
            True if the report was accepted, False otherwise
        """
        failed = sum(1 for p in processes if not p.get('passed'))
        payload = {
            "source": "command-attribution",
            "status": "failing" if failed else "passing",
            "summary": summary,
            "processes": processes,
        }
        return self._send_with_retry(payload, f"{len(processes)} processes, {failed} failed")

    def _send_with_retry(self, payload: Dict[str, Any], description: str) -> bool:
        retry_delay = self.retry_delay

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"Publishing report (attempt {attempt + 1}/{self.max_retries}): {description}")

                headers = {'Content-Type': 'application/json'}
                if self.api_key:
                    headers['X-API-KEY'] = self.api_key

                response = requests.post(
                    self.webhook_url,
                    json=payload,
                    headers=headers,
                    timeout=self.timeout
                )

                if 200 <= response.status_code < 300:
                    logger.info(f"Report published: {description}")
                    return True

                logger.warning(f"Report rejected with status {response.status_code}: {response.text}")

                # Client errors will not succeed on retry.
                if 400 <= response.status_code < 500:
                    logger.error(f"Client error, not retrying: {description}")
                    return False

            except requests.exceptions.Timeout:
                logger.warning(f"Report publish timeout (attempt {attempt + 1}/{self.max_retries})")
            except requests.exceptions.ConnectionError:
                logger.warning(f"Connection error (attempt {attempt + 1}/{self.max_retries})")
            except requests.exceptions.RequestException as e:
                logger.error(f"Unexpected error publishing report: {e}")

            if attempt < self.max_retries - 1:
                logger.info(f"Retrying in {retry_delay} seconds...")
                time.sleep(retry_delay)
                retry_delay *= 2

        logger.error(f"Failed to publish report after {self.max_retries} attempts: {description}")
        return False
