"""pixelflow - declarative image workflows over pluggable capabilities."""

__version__ = "0.1.0"

from pixelflow.core.config import PixelflowConfig, config
from pixelflow.core.engine import PipelineEngine, PipelineRun, RunState, StepResult
from pixelflow.core.errors import PixelflowError
from pixelflow.core.models import (
    BindingStore,
    Blob,
    CapabilityDescriptor,
    CapabilityKind,
    ParameterSpec,
    Pipeline,
    PipelineStep,
    SaveResult,
    TextResult,
)
from pixelflow.core.registry import CapabilityRegistry
from pixelflow.plugins.resolver import PluginResolver

__all__ = [
    "BindingStore",
    "Blob",
    "CapabilityDescriptor",
    "CapabilityKind",
    "CapabilityRegistry",
    "ParameterSpec",
    "Pipeline",
    "PipelineEngine",
    "PipelineRun",
    "PipelineStep",
    "PixelflowConfig",
    "PixelflowError",
    "PluginResolver",
    "RunState",
    "SaveResult",
    "StepResult",
    "TextResult",
    "config",
]
