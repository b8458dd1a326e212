"""Capability contract for pixelflow plugins.

A capability is any object exposing:

- ``descriptor``: a :class:`~pixelflow.core.models.CapabilityDescriptor`
- ``invoke(input, params)``: runs the operation and returns a result envelope

Plugins usually subclass one of the kind-tagged base classes below; the tag
lets the registry reject a capability whose descriptor claims a different
kind than the class it was written against.  Objects that do not subclass
them are accepted as long as they satisfy the contract structurally.

Plugin Module Contract
----------------------
A plugin module (e.g. the ``pixelflow_qr`` package installed from
``pixelflow-qr``) exposes its capabilities as a module-level sequence:

    >>> from pixelflow.plugins.base import GeneratorBase
    >>> from pixelflow.core.models import Blob, CapabilityDescriptor, ParameterSpec
    >>>
    >>> class QRGenerator(GeneratorBase):
    ...     descriptor = CapabilityDescriptor(
    ...         name="qr",
    ...         kind="generate",
    ...         parameters={"text": ParameterSpec(type="string", required=True)},
    ...     )
    ...
    ...     def invoke(self, input, params):
    ...         return Blob(data=encode_qr(params["text"]), mime="image/png")
    >>>
    >>> CAPABILITIES = [QRGenerator()]

``CapabilityRegistry.register_module`` reads ``CAPABILITIES`` and checks
every entry with :func:`check_capability` before registering it.
"""

import logging
from abc import ABC, abstractmethod
from types import ModuleType
from typing import Any, ClassVar, Protocol, runtime_checkable

from pixelflow.core.errors import InvalidCapabilityError
from pixelflow.core.models import (
    Blob,
    CapabilityDescriptor,
    CapabilityKind,
    SaveResult,
    StepOutput,
    TextResult,
)

logger = logging.getLogger(__name__)

# Result envelope each kind must return.
RESULT_TYPES: dict[CapabilityKind, type] = {
    CapabilityKind.GENERATE: Blob,
    CapabilityKind.TRANSFORM: Blob,
    CapabilityKind.VISION: TextResult,
    CapabilityKind.TEXT: TextResult,
    CapabilityKind.SAVE: SaveResult,
}


@runtime_checkable
class Capability(Protocol):
    """Structural type every registered capability satisfies."""

    descriptor: CapabilityDescriptor

    def invoke(self, input: StepOutput | None, params: dict[str, Any]) -> StepOutput: ...


class CapabilityBase(ABC):
    """Base class for capability implementations.

    Attributes
    ----------
    descriptor : CapabilityDescriptor
        Schema published by the capability.  Subclasses set it as a class
        attribute.
    kind : CapabilityKind | None
        Kind tag fixed by the kind-specific base classes.
    """

    descriptor: ClassVar[CapabilityDescriptor]
    kind: ClassVar[CapabilityKind | None] = None

    @property
    def name(self) -> str:
        return self.descriptor.name

    @abstractmethod
    def invoke(self, input: StepOutput | None, params: dict[str, Any]) -> StepOutput:
        """Run the operation.

        Args:
            input: Value of the step's input binding, or None when the step
                declares no input.
            params: Validated parameters with schema defaults filled in.

        Returns:
            The result envelope for this capability's kind.
        """


class GeneratorBase(CapabilityBase):
    """Produces a Blob from parameters alone."""

    kind = CapabilityKind.GENERATE

    @abstractmethod
    def invoke(self, input: None, params: dict[str, Any]) -> Blob: ...


class TransformBase(CapabilityBase):
    """Turns one Blob into another."""

    kind = CapabilityKind.TRANSFORM

    @abstractmethod
    def invoke(self, input: Blob, params: dict[str, Any]) -> Blob: ...


class VisionBase(CapabilityBase):
    """Analyses a Blob and describes it as text or JSON."""

    kind = CapabilityKind.VISION

    @abstractmethod
    def invoke(self, input: Blob, params: dict[str, Any]) -> TextResult: ...


class TextBase(CapabilityBase):
    """Generates text, optionally using an earlier result as context."""

    kind = CapabilityKind.TEXT

    @abstractmethod
    def invoke(self, input: StepOutput | None, params: dict[str, Any]) -> TextResult: ...


class SaveBase(CapabilityBase):
    """Persists a Blob to a destination."""

    kind = CapabilityKind.SAVE

    @abstractmethod
    def invoke(self, input: Blob, params: dict[str, Any]) -> SaveResult: ...


def check_capability(candidate: object) -> CapabilityDescriptor:
    """Check that ``candidate`` satisfies the capability contract.

    Args:
        candidate: Object offered for registration.

    Returns:
        The candidate's descriptor.

    Raises:
        InvalidCapabilityError: If the candidate is a class rather than an
            instance, lacks a CapabilityDescriptor or a callable ``invoke``,
            or its kind tag disagrees with its descriptor.
    """
    label = getattr(candidate, "__name__", None) or type(candidate).__name__

    if isinstance(candidate, type):
        raise InvalidCapabilityError(
            f"Capability '{label}' is a class; register an instance instead"
        )

    descriptor = getattr(candidate, "descriptor", None)
    if not isinstance(descriptor, CapabilityDescriptor):
        raise InvalidCapabilityError(f"Capability '{label}' has no CapabilityDescriptor")

    if not callable(getattr(candidate, "invoke", None)):
        raise InvalidCapabilityError(
            f"Capability '{descriptor.name}' has no callable invoke()",
            capability=descriptor.name,
            kind=descriptor.kind.value,
        )

    tag = getattr(candidate, "kind", None) if isinstance(candidate, CapabilityBase) else None
    if tag is not None and tag != descriptor.kind:
        raise InvalidCapabilityError(
            f"Capability '{descriptor.name}' is a {tag.value} implementation "
            f"but its descriptor declares kind '{descriptor.kind.value}'",
            capability=descriptor.name,
            kind=descriptor.kind.value,
        )

    return descriptor


def module_capabilities(module: ModuleType) -> list[Any]:
    """Return the capabilities a plugin module exports.

    Raises:
        InvalidCapabilityError: If the module has no iterable ``CAPABILITIES``.
    """
    exported = getattr(module, "CAPABILITIES", None)
    if exported is None or isinstance(exported, (str, bytes)):
        raise InvalidCapabilityError(
            f"Plugin module '{module.__name__}' does not export a CAPABILITIES sequence"
        )
    try:
        capabilities = list(exported)
    except TypeError:
        raise InvalidCapabilityError(
            f"Plugin module '{module.__name__}' CAPABILITIES is not iterable"
        ) from None

    logger.debug(f"Plugin module {module.__name__} exports {len(capabilities)} capabilities")
    return capabilities
