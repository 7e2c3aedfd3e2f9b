"""
Temporal activities for the webhook delivery sweep.

``TemporalWebhookDispatcher`` registers the ``DeliverySweep`` methods of a
regular ``WebhookDispatcher`` as activities named
``webhooks.delivery_sweep.<method>``. The workflow calls them through
``WorkflowDeliverySweepProxy`` so that all I/O stays in activities.
"""

from util.temporal import temporal_activity_registration
from webhooks.activity_names import DELIVERY_SWEEP_ACTIVITY_BASE
from webhooks.dispatcher import WebhookDispatcher


@temporal_activity_registration(DELIVERY_SWEEP_ACTIVITY_BASE)
class TemporalWebhookDispatcher(WebhookDispatcher):
    """Temporal activity wrapper for WebhookDispatcher."""

    pass


__all__ = ["TemporalWebhookDispatcher", "DELIVERY_SWEEP_ACTIVITY_BASE"]
