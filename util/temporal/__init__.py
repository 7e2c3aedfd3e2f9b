"""
Temporal helpers: activity registration and workflow proxies generated from
repository and service protocols.
"""

from .decorators import (
    temporal_activity_registration,
    temporal_workflow_proxy,
)

__all__ = ["temporal_activity_registration", "temporal_workflow_proxy"]
