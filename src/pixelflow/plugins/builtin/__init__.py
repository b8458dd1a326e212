"""Capabilities shipped with pixelflow itself.

This package follows the plugin module contract, so it can be registered
like any installed plugin:

    >>> from pixelflow.plugins import builtin
    >>> registry.register_module(builtin)
"""

import sys

from pixelflow.plugins.builtin.filesystem import FilesystemSave
from pixelflow.plugins.builtin.transforms import Convert, Resize

CAPABILITIES = [FilesystemSave(), Resize(), Convert()]


def register_builtins(registry):
    """Register the built-in capabilities on ``registry``.

    Returns:
        The capabilities newly registered by this call.
    """
    return registry.register_module(sys.modules[__name__])


__all__ = ["CAPABILITIES", "Convert", "FilesystemSave", "Resize", "register_builtins"]
