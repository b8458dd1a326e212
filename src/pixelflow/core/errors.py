"""Error types for pixelflow.

Every error raised by the registry, the plugin resolver, and the pipeline
engine derives from :class:`PixelflowError`.  Errors carry structured
context so callers (CLI commands, server tool handlers) can present them
without parsing messages:

- ``code``: machine-readable error code (e.g. ``"MISSING_PARAMETER"``)
- ``category``: classification used to pick a handling strategy
- ``retryable``: whether repeating the operation could succeed
- ``capability`` / ``kind`` / ``step_index``: where in a pipeline it failed
- ``cause``: the underlying exception, when one exists

Categories
----------
- ``user_input``: invalid caller-supplied values (bad or missing params)
- ``validation``: pre-execution pipeline problems (unset bindings)
- ``provider_config``: missing or broken capabilities and plugins
- ``execution``: a capability implementation failed while running
- ``internal``: anything else
"""

from __future__ import annotations

from typing import Any, Literal

ErrorCategory = Literal["user_input", "validation", "provider_config", "execution", "internal"]


class PixelflowError(Exception):
    """Base error for pixelflow.

    Attributes:
        code: Machine-readable error code.
        category: Error category for handling strategies.
        retryable: Whether the operation can be retried as-is.
        capability: Name of the capability involved, if known.
        kind: Capability kind involved, if known.
        step_index: Index of the failing pipeline step, if raised during a run.
        cause: The underlying exception, if any.
    """

    code: str = "PIXELFLOW_ERROR"
    category: ErrorCategory = "internal"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        capability: str | None = None,
        kind: str | None = None,
        step_index: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.capability = capability
        self.kind = kind
        self.step_index = step_index
        self.cause = cause

    def attach_step(self, step_index: int, kind: str, capability: str | None) -> "PixelflowError":
        """Record the pipeline position this error surfaced at.

        Values already set by the raiser are kept.
        """
        if self.step_index is None:
            self.step_index = step_index
        if self.kind is None:
            self.kind = kind
        if self.capability is None:
            self.capability = capability
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary for serialisation."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "category": self.category,
            "retryable": self.retryable,
            "capability": self.capability,
            "kind": self.kind,
            "step_index": self.step_index,
            "cause": str(self.cause) if self.cause is not None else None,
        }


# ---------------------------------------------------------------------------
# Registry errors
# ---------------------------------------------------------------------------


class DuplicateCapabilityError(PixelflowError):
    """Raised when a capability with the same (name, kind) is already registered."""

    code = "DUPLICATE_CAPABILITY"
    category = "provider_config"


class InvalidCapabilityError(PixelflowError):
    """Raised when an object does not satisfy the capability contract."""

    code = "INVALID_CAPABILITY"
    category = "provider_config"


class UnknownCapabilityError(PixelflowError):
    """Raised when no capability is registered under the requested (name, kind)."""

    code = "UNKNOWN_CAPABILITY"
    category = "provider_config"


# ---------------------------------------------------------------------------
# Parameter errors
# ---------------------------------------------------------------------------


class ParameterError(PixelflowError):
    """Base class for parameter validation failures."""

    code = "PARAMETER_ERROR"
    category = "user_input"


class MissingParameterError(ParameterError):
    """Raised when declared required parameters are absent.

    Attributes:
        missing: Names of every missing required parameter, in declaration order.
    """

    code = "MISSING_PARAMETER"

    def __init__(self, missing: list[str], *, capability: str | None = None, **kwargs) -> None:
        self.missing = list(missing)
        target = f" for '{capability}'" if capability else ""
        super().__init__(
            f"Missing required parameter(s){target}: {', '.join(self.missing)}",
            capability=capability,
            **kwargs,
        )


class InvalidParameterError(ParameterError):
    """Raised when a parameter value does not match its declared type."""

    code = "INVALID_PARAMETER"

    def __init__(self, parameter: str, message: str, **kwargs) -> None:
        self.parameter = parameter
        super().__init__(message, **kwargs)


class UnexpectedParameterError(ParameterError):
    """Raised in strict mode when parameters not declared by the schema are supplied."""

    code = "UNEXPECTED_PARAMETER"

    def __init__(self, unexpected: list[str], *, capability: str | None = None, **kwargs) -> None:
        self.unexpected = list(unexpected)
        target = f" for '{capability}'" if capability else ""
        super().__init__(
            f"Unexpected parameter(s){target}: {', '.join(self.unexpected)}",
            capability=capability,
            **kwargs,
        )


# ---------------------------------------------------------------------------
# Binding errors
# ---------------------------------------------------------------------------


class BindingError(PixelflowError):
    """Base class for binding store failures."""

    code = "BINDING_ERROR"
    category = "validation"


class UnresolvedBindingError(BindingError):
    """Raised when a step reads a binding that no earlier step has written."""

    code = "UNRESOLVED_BINDING"

    def __init__(self, binding: str, **kwargs) -> None:
        self.binding = binding
        super().__init__(f"Binding '{binding}' has not been written by any earlier step", **kwargs)


class BindingTypeError(BindingError):
    """Raised when a binding holds a result the reading step cannot accept."""

    code = "BINDING_TYPE_MISMATCH"

    def __init__(self, binding: str, expected: str, actual: str, **kwargs) -> None:
        self.binding = binding
        super().__init__(
            f"Binding '{binding}' holds a {actual}, but this step needs a {expected}",
            **kwargs,
        )


# ---------------------------------------------------------------------------
# Plugin errors
# ---------------------------------------------------------------------------


class PluginError(PixelflowError):
    """Base class for plugin resolution and installation failures."""

    code = "PLUGIN_ERROR"
    category = "provider_config"

    def __init__(
        self,
        message: str,
        *,
        plugin: str | None = None,
        package: str | None = None,
        manual_command: str | None = None,
        **kwargs,
    ) -> None:
        self.plugin = plugin
        self.package = package
        self.manual_command = manual_command
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "plugin": self.plugin,
                "package": self.package,
                "manual_command": self.manual_command,
            }
        )
        return data


class PluginNotFoundError(PluginError):
    """Raised when a plugin is not importable from any installation context.

    Attributes:
        declined: True when the user declined the install prompt.
    """

    code = "PLUGIN_NOT_FOUND"

    def __init__(self, message: str, *, declined: bool = False, **kwargs) -> None:
        self.declined = declined
        super().__init__(message, **kwargs)


class PluginLoadError(PluginError):
    """Raised when a plugin was found but importing it raised an error."""

    code = "PLUGIN_LOAD_ERROR"


class InstallFailedError(PluginError):
    """Raised when an install ran but the plugin still could not be resolved."""

    code = "INSTALL_FAILED"


# ---------------------------------------------------------------------------
# Execution errors
# ---------------------------------------------------------------------------


class StepExecutionError(PixelflowError):
    """Wraps an exception raised by a capability implementation.

    The original exception is available unchanged as ``cause`` and as
    ``__cause__``.
    """

    code = "STEP_EXECUTION_ERROR"
    category = "execution"

    def __init__(self, cause: BaseException, **kwargs) -> None:
        super().__init__(f"{type(cause).__name__}: {cause}", cause=cause, **kwargs)
        self.__cause__ = cause
