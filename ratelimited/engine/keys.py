"""Rate limit key derivation.

A key groups calls that share one budget. It is either an explicit literal, the
result of an expression evaluated against the call, or derived from the call
site so every guarded operation gets its own budget by default.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Protocol, runtime_checkable

from ratelimited.core.config import settings
from ratelimited.core.errors import ConfigurationError, KeyResolutionError
from ratelimited.engine.types import CallContext, KeyDerivation

logger = logging.getLogger(__name__)


def call_site_for(func: Callable[..., Any]) -> str:
    """Stable identity of a callable: ``module.QualifiedName(signature)``."""
    name = f"{func.__module__}.{func.__qualname__}"
    try:
        return f"{name}{inspect.signature(func)}"
    except (TypeError, ValueError):
        return name


@runtime_checkable
class ExpressionEvaluator(Protocol):
    """Evaluates a key expression against a call. May raise."""

    def evaluate(self, expression: str, context: CallContext) -> Any:
        ...


@runtime_checkable
class KeyGenerator(Protocol):
    """Derives the default key of a call."""

    def generate(self, context: CallContext) -> str:
        ...


class DefaultKeyGenerator:
    """Key every call by its call site, ignoring argument values."""

    def generate(self, context: CallContext) -> str:
        return context.call_site


class FormatExpressionEvaluator:
    """Evaluate ``str.format`` templates over the call's arguments.

    Named parameters are bound through the callable's signature, so
    ``"user:{user_id}"`` works whether ``user_id`` was passed positionally or by
    keyword. ``args``, ``kwargs``, ``target`` (also ``self`` for methods) and
    ``call_site`` are always available, e.g. ``"{args[0]}"`` or
    ``"{self.tenant_id}"``.
    """

    def _namespace(self, context: CallContext) -> dict[str, Any]:
        namespace: dict[str, Any] = {
            "args": context.args,
            "kwargs": context.kwargs,
            "target": context.target,
            "call_site": context.call_site,
        }
        namespace.update(context.kwargs)
        if context.func is None:
            return namespace

        try:
            signature = inspect.signature(context.func)
        except (TypeError, ValueError):
            return namespace

        call_args = context.args
        if context.target is not None:
            call_args = (context.target, *call_args)
        try:
            bound = signature.bind_partial(*call_args, **context.kwargs)
        except TypeError:
            return namespace
        bound.apply_defaults()
        namespace.update(bound.arguments)
        return namespace

    def evaluate(self, expression: str, context: CallContext) -> str:
        return expression.format_map(self._namespace(context))


class KeyResolver:
    """Computes the rate limit key for a call."""

    def __init__(
        self,
        *,
        evaluator: ExpressionEvaluator | None = None,
        key_generator: KeyGenerator | None = None,
        lenient: bool | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            evaluator: Expression evaluator for EXPRESSION keys.
            key_generator: Default key derivation for DEFAULT keys.
            lenient: Fall back to the default key when an expression fails.
                Defaults to RATELIMIT_KEY_RESOLUTION_MODE.
        """
        self._evaluator = evaluator or FormatExpressionEvaluator()
        self._key_generator = key_generator or DefaultKeyGenerator()
        if lenient is None:
            lenient = settings.rate_limit.key_resolution_mode == "lenient"
        self._lenient = lenient

    @staticmethod
    def variant_for(literal: str, expression: str) -> KeyDerivation:
        """Pick the derivation for a declaration; an explicit literal wins."""
        if literal:
            return KeyDerivation.EXPLICIT
        if expression:
            return KeyDerivation.EXPRESSION
        return KeyDerivation.DEFAULT

    def resolve(
        self,
        variant: KeyDerivation,
        literal: str,
        expression: str,
        context: CallContext,
    ) -> str:
        """Compute the key of one call.

        Raises:
            ConfigurationError: If an EXPLICIT key is empty.
            KeyResolutionError: If an EXPRESSION fails in strict mode.
        """
        if variant is KeyDerivation.EXPLICIT:
            if not literal:
                raise ConfigurationError(
                    code="empty_explicit_key",
                    message="Explicit rate limit key must not be empty",
                    details={"call_site": context.call_site},
                )
            return literal

        if variant is KeyDerivation.EXPRESSION:
            try:
                return self._evaluate(expression, context)
            except KeyResolutionError as exc:
                if not self._lenient:
                    raise
                logger.warning(
                    "rate_limit.key_fallback",
                    extra={"call_site": context.call_site, "error_code": exc.code},
                )

        return self._key_generator.generate(context)

    def _evaluate(self, expression: str, context: CallContext) -> str:
        if not expression:
            raise KeyResolutionError(
                code="empty_key_expression",
                message="Key expression must not be empty",
                details={"call_site": context.call_site},
            )
        try:
            key = self._evaluator.evaluate(expression, context)
        except Exception as exc:
            raise KeyResolutionError(
                code="key_expression_failed",
                message=f"Key expression {expression!r} failed: {exc}",
                details={"call_site": context.call_site, "error_type": type(exc).__name__},
            ) from exc

        if not isinstance(key, str) or not key:
            raise KeyResolutionError(
                code="invalid_key",
                message=f"Key expression {expression!r} did not produce a non-empty string",
                details={"call_site": context.call_site},
            )
        return key
