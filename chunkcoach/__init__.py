"""chunkcoach package initialization.

Analysis, scheduling and the session runner live in subpackages; the
practice-state store and analytics sit beside this package as `storage` and
`analytics`.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
