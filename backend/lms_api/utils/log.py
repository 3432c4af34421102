"""Method logging decorator used by the service layer.

Every decorated call emits up to three records on a logger named after the
owning class::

    [finalize] START: id=...
    [finalize] SUCCESS: ...
    [finalize] FAIL: ...

Each message option accepts ``True`` (default text), ``False`` (skip the
record) or a callable building the text. Callables receive the bound call
arguments as a dict, plus the result (success) or the exception (failure) as
first argument. Exceptions are always re-raised untouched.
"""

from __future__ import annotations

import functools
import inspect
import logging
from typing import Any, Callable, Dict, Optional, Union


ArgsMessage = Union[bool, Callable[[Dict[str, Any]], str]]
ResultMessage = Union[bool, Callable[[Any, Dict[str, Any]], str]]


def bound_arguments(func: Callable, args: tuple, kwargs: dict, include_self: bool = False) -> Dict[str, Any]:
    """Return the call arguments of ``func`` keyed by parameter name."""

    try:
        bound = inspect.signature(func).bind_partial(*args, **kwargs)
    except TypeError:
        return dict(kwargs)
    bound.apply_defaults()
    values = dict(bound.arguments)
    if not include_self:
        values.pop("self", None)
        values.pop("cls", None)
    return values


def _owner_logger(func: Callable) -> logging.Logger:
    qualname = getattr(func, "__qualname__", func.__name__)
    parts = qualname.split(".")
    owner = parts[-2] if len(parts) > 1 and parts[-2] != "<locals>" else func.__module__
    return logging.getLogger(owner)


def _format_args(values: Dict[str, Any]) -> str:
    return ", ".join(f"{key}={value!r}" for key, value in values.items())


def _render(option: Any, default: Callable[[], str], *params: Any) -> Optional[str]:
    if option is False or option is None:
        return None
    if callable(option):
        return option(*params)
    return default()


def log(
    args_message: ArgsMessage = True,
    success_message: ResultMessage = True,
    error_message: ResultMessage = True,
):
    def decorator(func: Callable):
        logger = _owner_logger(func)
        method = func.__name__

        def _start(values: Dict[str, Any]) -> None:
            text = _render(args_message, lambda: _format_args(values), values)
            if text is not None:
                logger.info("[%s] START: %s", method, text)

        def _success(result: Any, values: Dict[str, Any]) -> None:
            text = _render(success_message, lambda: "completed", result, values)
            if text is not None:
                logger.info("[%s] SUCCESS: %s", method, text)

        def _failure(exc: BaseException, values: Dict[str, Any]) -> None:
            text = _render(error_message, lambda: f"{type(exc).__name__}: {exc}", exc, values)
            if text is not None:
                logger.error("[%s] FAIL: %s", method, text)

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                values = bound_arguments(func, args, kwargs)
                _start(values)
                try:
                    result = await func(*args, **kwargs)
                except Exception as exc:
                    _failure(exc, values)
                    raise
                _success(result, values)
                return result

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            values = bound_arguments(func, args, kwargs)
            _start(values)
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                _failure(exc, values)
                raise
            _success(result, values)
            return result

        return wrapper

    return decorator
