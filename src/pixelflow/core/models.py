"""Data model for pixelflow pipelines.

Result envelopes
----------------
Blob
    Binary payload (usually an image) flowing between generate, transform,
    and save steps.
TextResult
    Text or JSON produced by vision and text steps.
SaveResult
    Outcome of persisting a Blob.

Schemas
-------
ParameterSpec / CapabilityDescriptor
    The schema a capability publishes so that its parameters can be checked
    before it is invoked.

Pipelines
---------
PipelineStep / Pipeline
    Declarative description of a run.  Both are Pydantic models so that
    callers can build them straight from JSON
    (``Pipeline.model_validate(payload)``); the step's input and output
    binding names serialise as ``in`` and ``out``.
BindingStore
    Named results of a single run, last write wins.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import UnresolvedBindingError


class CapabilityKind(str, Enum):
    """The five kinds of operation a capability can provide."""

    GENERATE = "generate"
    TRANSFORM = "transform"
    VISION = "vision"
    TEXT = "text"
    SAVE = "save"


# Kinds whose steps always consume an existing binding.
INPUT_REQUIRED_KINDS = frozenset({CapabilityKind.TRANSFORM, CapabilityKind.VISION, CapabilityKind.SAVE})


# ---------------------------------------------------------------------------
# Result envelopes
# ---------------------------------------------------------------------------


@dataclass
class Blob:
    """Binary payload plus format metadata.

    Attributes:
        data: Raw bytes.
        mime: MIME type, e.g. ``"image/png"``.
        width: Width in pixels, if known.
        height: Height in pixels, if known.
        provenance: Chain of operations that produced this blob,
            e.g. ``"generate:qr > transform:resize"``.
        metadata: Free-form extra information from the producer.
    """

    data: bytes
    mime: str
    width: int | None = None
    height: int | None = None
    provenance: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def size(self) -> int:
        """Payload size in bytes."""
        return len(self.data)


@dataclass
class TextResult:
    """Text or JSON output of a vision or text step."""

    content: str
    provenance: str = ""
    format: Literal["text", "json"] = "text"
    parsed: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class SaveResult:
    """Outcome of a save step."""

    destination: str
    bytes_written: int
    success: bool = True
    provider: str | None = None
    mime: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


StepOutput = Union[Blob, TextResult, SaveResult]


# ---------------------------------------------------------------------------
# Capability schemas
# ---------------------------------------------------------------------------


class ParameterSpec(BaseModel):
    """Schema for a single capability parameter.

    Attributes:
        type: Declared type.  ``enum`` values must be one of ``choices``.
        required: Whether the parameter must be supplied.
        default: Value filled in when an optional parameter is omitted.
        description: Human-readable description.
        choices: Allowed values for ``enum`` parameters.
        minimum: Lower bound for ``number`` parameters.
        maximum: Upper bound for ``number`` parameters.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["string", "number", "boolean", "enum", "object"]
    required: bool = False
    default: Any = None
    description: str = ""
    choices: list[Any] | None = None
    minimum: float | None = None
    maximum: float | None = None

    @model_validator(mode="after")
    def _enum_needs_choices(self) -> "ParameterSpec":
        if self.type == "enum" and not self.choices:
            raise ValueError("enum parameters must declare their choices")
        return self


class CapabilityDescriptor(BaseModel):
    """Static description of a capability.

    A descriptor is registered once per ``(name, kind)`` pair and lives as
    long as the registry holding it.

    Attributes:
        name: Capability name, unique per kind (e.g. ``"qr"``, ``"resize"``).
        kind: Which kind of step can target this capability.
        parameters: Parameter name to schema.
        description: Human-readable description.
        category: Grouping used by capability listings (e.g. ``"AI"``).
        is_ai: Whether the capability calls an AI model.
        requires_api_key: Whether the capability needs an API key.
        api_key_env_var: Environment variable holding that key.
        protocols: URL schemes a save capability handles (e.g. ``["s3"]``).
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    kind: CapabilityKind
    parameters: dict[str, ParameterSpec] = Field(default_factory=dict)
    description: str = ""
    category: str | None = None
    is_ai: bool = False
    requires_api_key: bool = False
    api_key_env_var: str | None = None
    protocols: list[str] = Field(default_factory=list)

    @property
    def key(self) -> tuple[str, CapabilityKind]:
        """Registry key for this descriptor."""
        return (self.name, self.kind)

    @property
    def required_parameters(self) -> list[str]:
        """Names of required parameters, in declaration order."""
        return [name for name, spec in self.parameters.items() if spec.required]


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------


class PipelineStep(BaseModel):
    """One step of a pipeline.

    Attributes:
        kind: Capability kind this step runs.
        target: Capability name.  Optional for save steps, which are routed
            by their ``destination`` parameter when no target is given.
        params: Parameters passed to the capability.
        input: Binding read as the step's input (``in`` in JSON).
        output: Binding the result is written to (``out`` in JSON).
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    kind: CapabilityKind
    target: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)
    input: str | None = Field(default=None, alias="in")
    output: str | None = Field(default=None, alias="out")

    @model_validator(mode="after")
    def _check_shape(self) -> "PipelineStep":
        if self.kind in INPUT_REQUIRED_KINDS and not self.input:
            raise ValueError(f"{self.kind.value} steps must declare an input binding")
        if self.kind is not CapabilityKind.SAVE and not self.target:
            raise ValueError(f"{self.kind.value} steps must declare a target capability")
        if self.kind is CapabilityKind.SAVE and not self.target and "destination" not in self.params:
            raise ValueError("save steps need a target or a 'destination' parameter")
        return self


class Pipeline(BaseModel):
    """A named, ordered list of steps."""

    name: str = "unnamed"
    steps: list[PipelineStep] = Field(default_factory=list)


class BindingStore:
    """Named results of a single pipeline run.

    Each name holds the most recently written result; there is no ordering
    beyond "last write wins".  A store belongs to exactly one run.
    """

    def __init__(self, initial: dict[str, StepOutput] | None = None) -> None:
        self._values: dict[str, StepOutput] = dict(initial or {})

    def write(self, name: str, value: StepOutput) -> None:
        self._values[name] = value

    def read(self, name: str) -> StepOutput:
        """Return the value bound to ``name``.

        Raises:
            UnresolvedBindingError: If nothing has been written under ``name``.
        """
        try:
            return self._values[name]
        except KeyError:
            raise UnresolvedBindingError(name) from None

    def names(self) -> list[str]:
        return list(self._values)

    def snapshot(self) -> dict[str, StepOutput]:
        """Return a shallow copy of the current bindings."""
        return dict(self._values)

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __len__(self) -> int:
        return len(self._values)
