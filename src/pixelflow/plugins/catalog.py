"""Catalogue of known optional plugins.

Each entry maps a logical plugin key (what a user asks for, e.g. ``"qr"``)
to the distribution that provides it and the module to import once it is
installed.  The catalogue is static; the resolver only reads it.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class PluginEntry:
    """A known optional plugin.

    Attributes:
        key: Logical key used to request the plugin.
        package: Distribution name on the package index (what gets installed).
        module: Import name of the plugin module.
        display_name: Human-readable name for prompts and listings.
        capability: Name of the capability the plugin provides.
    """

    key: str
    package: str
    module: str
    display_name: str
    capability: str


PLUGIN_CATALOG: dict[str, PluginEntry] = {
    entry.key: entry
    for entry in (
        PluginEntry(
            key="qr",
            package="pixelflow-qr",
            module="pixelflow_qr",
            display_name="QR Code Generator",
            capability="qr",
        ),
        PluginEntry(
            key="quickchart",
            package="pixelflow-quickchart",
            module="pixelflow_quickchart",
            display_name="QuickChart Generator",
            capability="quickchart",
        ),
        PluginEntry(
            key="mermaid",
            package="pixelflow-mermaid",
            module="pixelflow_mermaid",
            display_name="Mermaid Diagram Generator",
            capability="mermaid",
        ),
        PluginEntry(
            key="plotly",
            package="pixelflow-plotly",
            module="pixelflow_plotly",
            display_name="Plotly Visualization Generator",
            capability="plotly",
        ),
        PluginEntry(
            key="screenshot",
            package="pixelflow-screenshot",
            module="pixelflow_screenshot",
            display_name="Screenshot Generator",
            capability="screenshot",
        ),
    )
}
