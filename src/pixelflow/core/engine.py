"""Pipeline execution engine.

The engine runs a :class:`~pixelflow.core.models.Pipeline` one step at a
time against a fresh :class:`~pixelflow.core.models.BindingStore`.

Per-step algorithm
------------------
1. Resolve the step's capability in the registry (save steps without a
   target are routed by their ``destination`` parameter).
2. Validate the step's parameters against the capability's descriptor.
3. Read the step's input binding, if it declares one.
4. Invoke the capability with ``(input, params)``.
5. Check the result envelope, stamp its provenance, and write it to the
   step's output binding, if it declares one.

Steps 1-3 raise before the capability is touched, so a step that fails
validation causes no external side effect.  Any exception raised in step 4
aborts the run as a StepExecutionError wrapping it.  Nothing is retried and
nothing already done by earlier steps is undone: written files stay written.

Run States
----------
``pending`` → ``running`` → ``completed`` | ``failed``

Usage Example
-------------
    >>> from pixelflow.core.engine import PipelineEngine
    >>> from pixelflow.core.models import Pipeline
    >>>
    >>> engine = PipelineEngine(registry)
    >>> pipeline = Pipeline.model_validate({
    ...     "name": "qr-thumbnail",
    ...     "steps": [
    ...         {"kind": "generate", "target": "qr", "params": {"text": "hello"}, "out": "a"},
    ...         {"kind": "transform", "target": "resize", "in": "a",
    ...          "params": {"width": 100, "height": 100}, "out": "b"},
    ...         {"kind": "save", "in": "b", "params": {"destination": "./out.png"}},
    ...     ],
    ... })
    >>> run = engine.run(pipeline)
    >>> run.bindings.names()
    ['a', 'b']
"""

import dataclasses
import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pixelflow.plugins.base import RESULT_TYPES, Capability

from .errors import BindingTypeError, PixelflowError, StepExecutionError
from .models import (
    BindingStore,
    Blob,
    CapabilityKind,
    Pipeline,
    PipelineStep,
    StepOutput,
    TextResult,
)
from .registry import CapabilityRegistry

logger = logging.getLogger(__name__)

# Envelopes each kind accepts as its input binding.
_ACCEPTED_INPUTS: dict[CapabilityKind, tuple[type, ...]] = {
    CapabilityKind.GENERATE: (Blob, TextResult),
    CapabilityKind.TRANSFORM: (Blob,),
    CapabilityKind.VISION: (Blob,),
    CapabilityKind.TEXT: (Blob, TextResult),
    CapabilityKind.SAVE: (Blob,),
}

_PROVENANCE_SEPARATOR = " > "


class RunState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class StepResult:
    """Record of one completed step."""

    index: int
    step: PipelineStep
    capability: str
    output: StepOutput
    duration: float


@dataclass
class PipelineRun:
    """State and outcome of one pipeline run.

    Attributes:
        pipeline: The pipeline being run.
        bindings: The run's binding store.
        state: Current run state.
        step_index: Index of the running step, or of the failed step once
            the run has failed.
        error: The error that failed the run.
        results: One record per completed step, in order.
    """

    pipeline: Pipeline
    bindings: BindingStore = field(default_factory=BindingStore)
    state: RunState = RunState.PENDING
    step_index: int | None = None
    error: PixelflowError | None = None
    results: list[StepResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is RunState.COMPLETED

    def raise_for_failure(self) -> None:
        """Re-raise the run's error if it failed."""
        if self.error is not None:
            raise self.error

    def failure(self) -> dict[str, Any] | None:
        """Structured failure report, or None when the run did not fail."""
        if self.error is None:
            return None
        return self.error.to_dict()


class PipelineEngine:
    """Runs pipelines against a capability registry.

    The engine holds no per-run state, so one engine can serve concurrent
    runs from several threads; each run owns its own BindingStore.

    Args:
        registry: Registry capabilities are resolved and validated through.
    """

    def __init__(self, registry: CapabilityRegistry) -> None:
        self.registry = registry

    def run(
        self,
        pipeline: Pipeline,
        initial_bindings: dict[str, StepOutput] | None = None,
    ) -> PipelineRun:
        """Run a pipeline and raise if any step fails.

        Raises:
            PixelflowError: The failing step's error, carrying its
                ``step_index``, ``kind`` and ``capability``.
        """
        pipeline_run = self.execute(pipeline, initial_bindings)
        pipeline_run.raise_for_failure()
        return pipeline_run

    def execute(
        self,
        pipeline: Pipeline,
        initial_bindings: dict[str, StepOutput] | None = None,
    ) -> PipelineRun:
        """Run a pipeline and report failure on the returned run.

        Args:
            pipeline: Pipeline to run.
            initial_bindings: Bindings visible before the first step
                (e.g. uploaded images).

        Returns:
            The finished run, in state ``completed`` or ``failed``.
        """
        pipeline_run = PipelineRun(pipeline=pipeline, bindings=BindingStore(initial_bindings))
        pipeline_run.state = RunState.RUNNING
        logger.info(f"Running pipeline '{pipeline.name}' ({len(pipeline.steps)} steps)")

        for index, step in enumerate(pipeline.steps):
            pipeline_run.step_index = index
            try:
                pipeline_run.results.append(self._run_step(index, step, pipeline_run.bindings))
            except PixelflowError as e:
                e.attach_step(index, step.kind.value, step.target)
                pipeline_run.state = RunState.FAILED
                pipeline_run.error = e
                logger.error(
                    f"Pipeline '{pipeline.name}' failed at step {index} "
                    f"({step.kind.value} '{e.capability}'): {e.message}"
                )
                return pipeline_run

        pipeline_run.state = RunState.COMPLETED
        pipeline_run.step_index = None
        logger.info(f"Pipeline '{pipeline.name}' completed ({len(pipeline_run.results)} steps)")
        return pipeline_run

    # -- Step execution -----------------------------------------------------

    def _resolve(self, step: PipelineStep) -> Capability:
        if step.target:
            return self.registry.lookup(step.target, step.kind)
        return self.registry.lookup_save(str(step.params.get("destination", "")))

    def _run_step(self, index: int, step: PipelineStep, bindings: BindingStore) -> StepResult:
        kind = step.kind
        capability = self._resolve(step)
        descriptor = capability.descriptor
        name = descriptor.name

        try:
            params = self.registry.validate(descriptor, step.params)
            input_value = self._read_input(step, bindings)
        except PixelflowError as e:
            raise e.attach_step(index, kind.value, name)

        logger.debug(f"Step {index}: invoking {kind.value} '{name}'")
        started = time.perf_counter()
        try:
            output = capability.invoke(input_value, params)
        except Exception as e:
            raise StepExecutionError(e, step_index=index, kind=kind.value, capability=name) from e
        duration = time.perf_counter() - started

        if inspect.iscoroutine(output):
            output.close()
            cause = TypeError(
                f"{kind.value} capability '{name}' has an async invoke(); "
                f"capabilities must return their result synchronously"
            )
            raise StepExecutionError(cause, step_index=index, kind=kind.value, capability=name)

        expected = RESULT_TYPES[kind]
        if not isinstance(output, expected):
            cause = TypeError(
                f"{kind.value} capability '{name}' returned {type(output).__name__}, "
                f"expected {expected.__name__}"
            )
            raise StepExecutionError(cause, step_index=index, kind=kind.value, capability=name)

        output = _stamp_provenance(output, input_value, f"{kind.value}:{name}")
        if step.output:
            bindings.write(step.output, output)

        logger.debug(f"Step {index}: {kind.value} '{name}' finished in {duration:.3f}s")
        return StepResult(index=index, step=step, capability=name, output=output, duration=duration)

    def _read_input(self, step: PipelineStep, bindings: BindingStore) -> StepOutput | None:
        if not step.input:
            return None
        value = bindings.read(step.input)
        accepted = _ACCEPTED_INPUTS[step.kind]
        if not isinstance(value, accepted):
            raise BindingTypeError(
                step.input,
                expected=" or ".join(t.__name__ for t in accepted),
                actual=type(value).__name__,
            )
        return value


def _stamp_provenance(output: StepOutput, input_value: StepOutput | None, label: str) -> StepOutput:
    """Record the operation chain on a Blob or TextResult.

    An implementation-supplied provenance replaces the default label for
    this link; the input's chain is always kept in front of it.
    """
    if not isinstance(output, (Blob, TextResult)):
        return output
    link = output.provenance or label
    upstream = getattr(input_value, "provenance", "")
    chain = f"{upstream}{_PROVENANCE_SEPARATOR}{link}" if upstream else link
    return dataclasses.replace(output, provenance=chain)
