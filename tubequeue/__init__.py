"""TubeQueue: a cached, editable view of a YouTube library over InnerTube."""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
