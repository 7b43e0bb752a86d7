"""conda-multilock: Multi-environment lock resolution with solve groups."""

from __future__ import annotations

try:
    from ._version import __version__
except ImportError:  # pragma: no cover
    __version__ = "0.0.0.dev0"
