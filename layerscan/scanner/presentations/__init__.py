# layerscan/scanner/presentations/__init__.py
"""
Presentation-layer discovery plugins.
Each plugin classifies the request/response framing spoken over a session.
"""
from layerscan.scanner.presentations.http_presentation import HTTPDiscovery

# Registry of all available presentation plugins, in evaluation order.
ALL_PRESENTATION_PLUGINS = {
    "http": HTTPDiscovery,
}

__all__ = ["HTTPDiscovery", "ALL_PRESENTATION_PLUGINS"]
