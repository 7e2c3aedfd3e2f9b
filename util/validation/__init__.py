"""
Runtime validation utilities shared by the cancellation and webhook
packages.

Repository and gateway implementations are checked against their
``@runtime_checkable`` Protocols when a use case or service is constructed,
so that wiring mistakes in the composition root surface at startup rather
than halfway through a cancellation.
"""

import logging
from typing import Type, TypeVar

logger = logging.getLogger(__name__)

P = TypeVar("P")


class RepositoryValidationError(Exception):
    """Raised when a collaborator does not satisfy its protocol"""

    pass


def validate_repository_protocol(
    repository: object, protocol: Type[P]
) -> None:
    """
    Validate that an implementation satisfies a protocol contract.

    Args:
        repository: The implementation to validate
        protocol: The ``@runtime_checkable`` protocol class

    Raises:
        RepositoryValidationError: If the implementation is missing
            methods required by the protocol
    """
    logger.debug(
        "Validating repository protocol",
        extra={
            "repository_type": type(repository).__name__,
            "protocol_name": protocol.__name__,
        },
    )

    if not isinstance(repository, protocol):
        logger.error(
            "Repository protocol validation failed",
            extra={
                "repository_type": type(repository).__name__,
                "protocol_name": protocol.__name__,
            },
        )
        raise RepositoryValidationError(
            f"Repository {type(repository).__name__} does not implement "
            f"{protocol.__name__} protocol. Missing or incorrect methods."
        )


def ensure_repository_protocol(repository: object, protocol: Type[P]) -> P:
    """
    Validate and return an implementation typed as its protocol.

    Example:
        >>> from cancellation.repositories import OrderRepository
        >>> from cancellation.repos.memory.order import (
        ...     MemoryOrderRepository,
        ... )
        >>> repo = ensure_repository_protocol(
        ...     MemoryOrderRepository(), OrderRepository
        ... )
    """
    validate_repository_protocol(repository, protocol)
    return repository  # type: ignore[return-value]


__all__ = [
    "RepositoryValidationError",
    "validate_repository_protocol",
    "ensure_repository_protocol",
]
