# layerscan/errors.py
"""
Error taxonomy for the scanner.

Only UsageError and ResolutionError ever reach the operator. Everything
else is caught inside the prober or inside a plugin's run() wrapper and
turned into a "closed" / "not detected" verdict for that one attempt.
"""

from __future__ import annotations


class ScanError(Exception):
    """Base class for every error raised by layerscan."""


class UsageError(ScanError):
    """Bad CLI input or configuration. Fatal, the scan never starts."""


class ResolutionError(ScanError):
    """Hostname lookup failed. Fatal for that target only."""


class SessionConnectError(ScanError):
    """Connect refused, reset or timed out while opening a session."""


class TransportError(ScanError):
    """I/O failure in the middle of a probe (dropped connection, read timeout)."""


class ProtocolMismatchError(ScanError):
    """A response did not match the grammar the plugin expected."""


class CollaboratorError(ScanError):
    """A vulnerability corroboration probe could not produce an answer."""
