"""Plugin system for pixelflow.

- **base**: the capability contract and kind-tagged base classes
- **catalog**: known optional plugins and the distributions providing them
- **launch**: launch-context detection and package-manager commands
- **resolver**: PluginResolver, which finds and installs plugins
- **builtin**: capabilities shipped with pixelflow
"""

from pixelflow.plugins.base import (
    Capability,
    CapabilityBase,
    GeneratorBase,
    SaveBase,
    TextBase,
    TransformBase,
    VisionBase,
)
from pixelflow.plugins.catalog import PLUGIN_CATALOG, PluginEntry

__all__ = [
    "Capability",
    "CapabilityBase",
    "GeneratorBase",
    "PLUGIN_CATALOG",
    "PluginEntry",
    "SaveBase",
    "TextBase",
    "TransformBase",
    "VisionBase",
]
