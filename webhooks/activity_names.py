"""
Activity name bases shared by the activity registrations and the workflow
proxies.
"""

DELIVERY_SWEEP_ACTIVITY_BASE = "webhooks.delivery_sweep"
