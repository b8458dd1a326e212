"""Capability registry and parameter validation.

The registry is the catalogue the pipeline engine consults before every
step.  It holds one capability per ``(name, kind)`` pair together with the
descriptor it published, and checks supplied parameters against that
descriptor before anything is invoked.

Registries are plain objects.  There is no module-level instance: create
one, populate it, and hand it to the resolver and the engine explicitly.
Tests can therefore build as many isolated registries as they need.

Usage Example
-------------
    >>> from pixelflow.core.registry import CapabilityRegistry
    >>> from pixelflow.plugins.builtin import register_builtins
    >>>
    >>> registry = CapabilityRegistry()
    >>> register_builtins(registry)
    >>> resize = registry.lookup("resize", "transform")
    >>> params = registry.validate(resize.descriptor, {"width": 100, "height": 100})

Validation Rules
----------------
- Every declared required parameter must be present (all missing names are
  reported together in one MissingParameterError).
- Present values are type-checked shallowly against their declared type.
  ``object`` values must be mappings; their contents are left to the
  implementation.
- Undeclared parameters pass through unless the registry is strict.
- Declared defaults are filled in for omitted optional parameters.
"""

import logging
import threading
from types import ModuleType
from typing import Any

from pixelflow.plugins.base import Capability, check_capability, module_capabilities

from .config import PixelflowConfig, config as default_config
from .errors import (
    DuplicateCapabilityError,
    InvalidParameterError,
    MissingParameterError,
    UnexpectedParameterError,
    UnknownCapabilityError,
)
from .models import CapabilityDescriptor, CapabilityKind, ParameterSpec

logger = logging.getLogger(__name__)

# Destination prefixes that always mean "local filesystem".
_LOCAL_PATH_PREFIXES = ("/", "./", "../")


class CapabilityRegistry:
    """Registry of capabilities keyed by ``(name, kind)``.

    Registration is serialised by a lock; lookups read the underlying dict
    directly, so the registry is safe to share between concurrent pipeline
    runs once startup registration is done.

    Attributes:
        strict: Reject parameters a descriptor does not declare.
        default_save_provider: Save capability used for local paths and
            destinations without a scheme.
    """

    def __init__(
        self,
        config: PixelflowConfig | None = None,
        *,
        strict: bool | None = None,
    ) -> None:
        cfg = config or default_config
        self.strict = cfg.strict_parameters if strict is None else strict
        self.default_save_provider = cfg.default_save_provider

        self._capabilities: dict[tuple[str, CapabilityKind], Capability] = {}
        self._lock = threading.Lock()

    # -- Registration -------------------------------------------------------

    def register(self, capability: Any) -> CapabilityDescriptor:
        """Register a capability.

        Args:
            capability: Object satisfying the capability contract.

        Returns:
            The capability's descriptor.

        Raises:
            InvalidCapabilityError: If the object fails the structural check.
            DuplicateCapabilityError: If ``(name, kind)`` is already registered.
        """
        descriptor = check_capability(capability)

        with self._lock:
            if descriptor.key in self._capabilities:
                raise DuplicateCapabilityError(
                    f"A {descriptor.kind.value} capability named '{descriptor.name}' "
                    f"is already registered",
                    capability=descriptor.name,
                    kind=descriptor.kind.value,
                )
            self._capabilities[descriptor.key] = capability

        logger.info(f"Registered {descriptor.kind.value} capability: {descriptor.name}")
        return descriptor

    def register_module(self, module: ModuleType) -> list[Capability]:
        """Register every capability a plugin module exports.

        All exports are checked before any is registered, so a module with
        one malformed export registers nothing.  Exports already registered
        (the same object under the same key) are skipped, which makes
        loading a module twice harmless.

        Returns:
            The capabilities newly registered by this call.
        """
        exported = module_capabilities(module)
        for capability in exported:
            check_capability(capability)

        registered: list[Capability] = []
        for capability in exported:
            if self._capabilities.get(capability.descriptor.key) is capability:
                continue
            self.register(capability)
            registered.append(capability)

        logger.info(
            f"Loaded {len(registered)} capabilities from plugin module {module.__name__}"
        )
        return registered

    # -- Lookup -------------------------------------------------------------

    def lookup(self, name: str, kind: CapabilityKind | str) -> Capability:
        """Return the capability registered under ``(name, kind)``.

        Raises:
            UnknownCapabilityError: If nothing is registered under that key.
        """
        kind = CapabilityKind(kind)
        capability = self._capabilities.get((name, kind))
        if capability is None:
            available = ", ".join(self.names(kind)) or "none"
            raise UnknownCapabilityError(
                f"No {kind.value} capability named '{name}'. Available: {available}",
                capability=name,
                kind=kind.value,
            )
        return capability

    def lookup_save(self, destination: str) -> Capability:
        """Route a save destination to a save capability.

        - ``scheme://rest`` goes to the save capability declaring ``scheme``
          in its protocols, or else the one named ``scheme``.
        - Local paths (``/``, ``./``, ``../``) and bare names go to the
          default save provider.

        Raises:
            UnknownCapabilityError: If no save capability handles the destination.
        """
        if "://" in destination:
            scheme = destination.split("://", 1)[0]
            for (name, kind), capability in list(self._capabilities.items()):
                if kind is CapabilityKind.SAVE and scheme in capability.descriptor.protocols:
                    return capability
            return self.lookup(scheme, CapabilityKind.SAVE)

        if not destination.startswith(_LOCAL_PATH_PREFIXES):
            logger.debug(f"Destination '{destination}' has no scheme, using default save provider")
        return self.lookup(self.default_save_provider, CapabilityKind.SAVE)

    def names(self, kind: CapabilityKind | str | None = None) -> list[str]:
        """List registered capability names, optionally for one kind only."""
        if kind is None:
            return [name for name, _ in self._capabilities]
        kind = CapabilityKind(kind)
        return [name for name, k in self._capabilities if k is kind]

    def describe(self) -> dict[str, list[dict[str, Any]]]:
        """Describe every registered capability, grouped by kind.

        Returns:
            Mapping of kind value to a list of JSON-ready descriptor dumps.
        """
        summary: dict[str, list[dict[str, Any]]] = {kind.value: [] for kind in CapabilityKind}
        for capability in self._capabilities.values():
            descriptor = capability.descriptor
            summary[descriptor.kind.value].append(descriptor.model_dump(mode="json"))
        return summary

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        name, kind = key
        try:
            return (name, CapabilityKind(kind)) in self._capabilities
        except ValueError:
            return False

    def __len__(self) -> int:
        return len(self._capabilities)

    # -- Validation ---------------------------------------------------------

    def validate(
        self, descriptor: CapabilityDescriptor, params: dict[str, Any] | None
    ) -> dict[str, Any]:
        """Check parameters against a descriptor.

        Args:
            descriptor: Schema to validate against.
            params: Supplied parameters (None is treated as empty).

        Returns:
            A new dict holding the supplied parameters plus declared defaults
            for omitted optional parameters.

        Raises:
            MissingParameterError: If declared required parameters are absent.
            InvalidParameterError: If a value does not match its declared type.
            UnexpectedParameterError: If the registry is strict and undeclared
                parameters were supplied.
        """
        supplied = dict(params or {})
        capability = descriptor.name
        kind = descriptor.kind.value

        missing = [name for name in descriptor.required_parameters if name not in supplied]
        if missing:
            raise MissingParameterError(missing, capability=capability, kind=kind)

        for name, value in supplied.items():
            spec = descriptor.parameters.get(name)
            if spec is not None:
                _check_type(name, spec, value, capability=capability, kind=kind)

        unexpected = [name for name in supplied if name not in descriptor.parameters]
        if unexpected:
            if self.strict:
                raise UnexpectedParameterError(unexpected, capability=capability, kind=kind)
            logger.debug(f"Passing undeclared parameters to '{capability}': {unexpected}")

        for name, spec in descriptor.parameters.items():
            if name not in supplied and spec.default is not None:
                supplied[name] = spec.default

        return supplied


def _check_type(name: str, spec: ParameterSpec, value: Any, **context) -> None:
    """Shallow type check of one parameter value."""
    if spec.type == "string":
        ok = isinstance(value, str)
    elif spec.type == "number":
        # bool is an int subclass but never a valid number here
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    elif spec.type == "boolean":
        ok = isinstance(value, bool)
    elif spec.type == "object":
        ok = isinstance(value, dict)
    else:  # enum
        if value not in (spec.choices or []):
            raise InvalidParameterError(
                name,
                f"Parameter '{name}' must be one of {spec.choices}, got {value!r}",
                **context,
            )
        return

    if not ok:
        raise InvalidParameterError(
            name,
            f"Parameter '{name}' must be of type {spec.type}, got {type(value).__name__}",
            **context,
        )

    if spec.type == "number":
        if spec.minimum is not None and value < spec.minimum:
            raise InvalidParameterError(
                name, f"Parameter '{name}' must be >= {spec.minimum}, got {value}", **context
            )
        if spec.maximum is not None and value > spec.maximum:
            raise InvalidParameterError(
                name, f"Parameter '{name}' must be <= {spec.maximum}, got {value}", **context
            )
