"""
Ancillary cancellation package.

Cancels travel ancillaries (lounge access, transfers, eSIMs) sold with a
booking, one product or a whole order at a time, and publishes lifecycle
events for every outcome.
"""
