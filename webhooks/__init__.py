"""
Webhook subscriptions and signed, retried delivery of cancellation
lifecycle events.
"""
