"""Core components of pixelflow.

- **PixelflowConfig** / **config**: settings loaded from ``PIXELFLOW_*``
  environment variables and ``.env``
- **errors**: the PixelflowError hierarchy
- **models**: result envelopes, capability descriptors, pipelines
- **registry**: CapabilityRegistry (``pixelflow.core.registry``)
- **engine**: PipelineEngine (``pixelflow.core.engine``)

The registry and engine are imported from their modules rather than
re-exported here, because they depend on the plugin contract in
``pixelflow.plugins.base``, which itself builds on this package.
"""

from pixelflow.core.config import PixelflowConfig, config
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

__all__ = [
    "BindingStore",
    "Blob",
    "CapabilityDescriptor",
    "CapabilityKind",
    "ParameterSpec",
    "Pipeline",
    "PipelineStep",
    "PixelflowConfig",
    "PixelflowError",
    "SaveResult",
    "TextResult",
    "config",
]
