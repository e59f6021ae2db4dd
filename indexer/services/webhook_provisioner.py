"""Webhook provisioner: creates/deletes provider subscriptions with retry."""

import logging
import time
from typing import Callable, Optional, TypeVar

from indexer.core.config import settings
from indexer.core.exceptions import ProviderError, ProvisioningError
from indexer.models.job import IndexingJob, JobType
from indexer.services.helius_service import HeliusService, helius_service

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WebhookProvisioner:
    """Wraps the provider client with bounded retry and linear backoff.

    Attempt ``n`` that fails transiently sleeps ``base_delay * n`` before the
    next one. Non-transient provider errors (4xx) stop immediately.
    """

    def __init__(
        self,
        client: Optional[HeliusService] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client or helius_service
        self.max_attempts = max_attempts or settings.PROVISION_MAX_ATTEMPTS
        self.base_delay = settings.PROVISION_RETRY_DELAY_SECONDS if base_delay is None else base_delay
        self._sleep = sleep

    def _with_retry(self, operation: str, fn: Callable[[], T]) -> T:
        last_error: Optional[ProviderError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn()
            except ProviderError as e:
                last_error = e
                logger.warning(
                    "%s failed (attempt %d/%d): %s", operation, attempt, self.max_attempts, e.message
                )
                if not e.transient:
                    break
                if attempt < self.max_attempts:
                    self._sleep(self.base_delay * attempt)

        raise ProvisioningError(last_error.message if last_error else f"{operation} failed")

    def create_subscription(self, job: IndexingJob) -> str:
        """Create the provider webhook for a job and return its id."""
        config = HeliusService.build_webhook_config(
            JobType(job.job_type), job.id, job.configuration or {}
        )
        return self._with_retry(
            f"Create webhook for job {job.id}",
            lambda: self.client.create_webhook(config),
        )

    def delete_subscription(self, webhook_id: str) -> None:
        """Remove a provider webhook."""
        self._with_retry(
            f"Delete webhook {webhook_id}",
            lambda: self.client.delete_webhook(webhook_id),
        )


webhook_provisioner = WebhookProvisioner()
