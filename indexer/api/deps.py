"""Shared FastAPI dependencies for the dispatch queue and provisioner."""

from fastapi import Request

from indexer.services.webhook_provisioner import WebhookProvisioner, webhook_provisioner
from indexer.tasks.dispatch import DispatchQueue


def get_dispatch_queue(request: Request) -> DispatchQueue:
    """The queue built in the app lifespan, or a fresh one outside it."""
    dispatch = getattr(request.app.state, "dispatch", None)
    return dispatch if dispatch is not None else DispatchQueue()


def get_provisioner() -> WebhookProvisioner:
    return webhook_provisioner
