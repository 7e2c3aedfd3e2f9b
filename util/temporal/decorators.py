"""
Temporal decorators that turn protocol implementations into activities and
protocols into workflow-side proxies.

Both decorators walk the decorated class's MRO and pick up the public async
methods declared on Protocol bases, so the activity side and the workflow
side always agree on the same set of names:

- ``temporal_activity_registration(prefix)`` wraps each method of a concrete
  implementation with ``activity.defn(name=f"{prefix}.{method}")``.
- ``temporal_workflow_proxy(prefix)`` implements each method of a protocol
  with ``workflow.execute_activity(f"{prefix}.{method}", ...)`` and
  re-validates pydantic return values.
"""

import functools
import inspect
import logging
from datetime import timedelta
from typing import (
    Any,
    Callable,
    Dict,
    Optional,
    Type,
    TypeVar,
    Union,
    get_args,
    get_origin,
)

from pydantic import BaseModel
from temporalio import activity, workflow
from temporalio.common import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_protocol_class(cls: type) -> bool:
    return bool(getattr(cls, "_is_protocol", False))


def discover_protocol_methods(
    cls_hierarchy: tuple[type, ...],
) -> Dict[str, Callable[..., Any]]:
    """
    Find the public coroutine methods declared on Protocol bases.

    Args:
        cls_hierarchy: A class MRO

    Returns:
        Mapping of method name to the protocol's function object, in
        declaration order
    """
    methods: Dict[str, Callable[..., Any]] = {}
    for base_class in cls_hierarchy:
        if base_class is object or not _is_protocol_class(base_class):
            continue
        for name, member in base_class.__dict__.items():
            if name in methods or name.startswith("_"):
                continue
            if inspect.iscoroutinefunction(member):
                methods[name] = member

    logger.debug(
        "Protocol method discovery finished",
        extra={
            "classes": [cls.__name__ for cls in cls_hierarchy],
            "methods": list(methods),
        },
    )
    return methods


def temporal_activity_registration(
    activity_prefix: str,
) -> Callable[[Type[T]], Type[T]]:
    """
    Class decorator registering protocol methods as Temporal activities.

    Example:
        @temporal_activity_registration("webhooks.delivery_sweep")
        class TemporalWebhookDispatcher(WebhookDispatcher):
            pass

        # process_pending_events becomes the activity
        # "webhooks.delivery_sweep.process_pending_events"
    """

    def decorator(cls: Type[T]) -> Type[T]:
        methods = discover_protocol_methods(cls.__mro__)
        if not methods:
            raise TypeError(
                f"{cls.__name__} has no Protocol base declaring async methods"
            )

        for name in methods:
            # Bind to the concrete implementation, not the protocol stub
            implementation = getattr(cls, name)

            def make_wrapper(
                original: Callable[..., Any], method_name: str
            ) -> Callable[..., Any]:
                @functools.wraps(original)
                async def wrapper(*args: Any, **kwargs: Any) -> Any:
                    return await original(*args, **kwargs)

                wrapper.__name__ = method_name
                wrapper.__qualname__ = f"{cls.__name__}.{method_name}"
                return wrapper

            wrapped = activity.defn(name=f"{activity_prefix}.{name}")(
                make_wrapper(implementation, name)
            )
            setattr(cls, name, wrapped)

        logger.info(
            "Temporal activity registration applied",
            extra={
                "class_name": cls.__name__,
                "activity_prefix": activity_prefix,
                "wrapped_methods": list(methods),
            },
        )
        return cls

    return decorator


def temporal_workflow_proxy(
    activity_prefix: str,
    default_timeout_seconds: int = 30,
    retry_methods: Optional[list[str]] = None,
) -> Callable[[Type[T]], Type[T]]:
    """
    Class decorator implementing a protocol by calling activities.

    Methods listed in ``retry_methods`` get Temporal's default retry policy;
    every other method fails fast with a single attempt so that retry
    decisions stay with the caller.

    Example:
        @temporal_workflow_proxy("webhooks.delivery_sweep")
        class WorkflowDeliverySweepProxy(DeliverySweep):
            pass
    """

    def decorator(cls: Type[T]) -> Type[T]:
        retry_set = set(retry_methods or [])
        fail_fast = RetryPolicy(maximum_attempts=1)
        methods = discover_protocol_methods(cls.__mro__)

        for name, original in methods.items():
            return_type = _unwrap_optional(
                inspect.signature(original).return_annotation
            )

            def make_method(
                method_name: str, model: Any, original: Callable[..., Any]
            ) -> Callable[..., Any]:
                @functools.wraps(original)
                async def proxy_method(
                    self: Any, *args: Any, **kwargs: Any
                ) -> Any:
                    if kwargs:
                        raise ValueError(
                            f"kwargs not supported in workflow proxy for "
                            f"{method_name}. Use positional args."
                        )
                    activity_name = f"{activity_prefix}.{method_name}"
                    workflow.logger.debug(
                        "Workflow: calling activity",
                        extra={"activity_name": activity_name},
                    )
                    result = await workflow.execute_activity(
                        activity_name,
                        args=list(args),
                        start_to_close_timeout=timedelta(
                            seconds=default_timeout_seconds
                        ),
                        retry_policy=(
                            None if method_name in retry_set else fail_fast
                        ),
                    )
                    if result is not None and _is_pydantic_model(model):
                        return model.model_validate(result)
                    return result

                return proxy_method

            setattr(cls, name, make_method(name, return_type, original))

        logger.info(
            "Temporal workflow proxy applied",
            extra={
                "class_name": cls.__name__,
                "activity_prefix": activity_prefix,
                "proxied_methods": list(methods),
                "retry_methods": sorted(retry_set),
            },
        )
        return cls

    return decorator


def _is_pydantic_model(type_hint: Any) -> bool:
    return inspect.isclass(type_hint) and issubclass(type_hint, BaseModel)


def _unwrap_optional(annotation: Any) -> Any:
    """Return T for Optional[T], the annotation itself otherwise."""
    if get_origin(annotation) is Union:
        args = [a for a in get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation
