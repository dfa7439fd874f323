# layerscan/__init__.py
"""
layerscan: port discovery plus layered (session → presentation →
application) service identification.
"""

__version__ = "0.1.0"
