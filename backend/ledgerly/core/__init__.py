"""Core application infrastructure layer.

Exports configuration settings to simplify import paths inside tests
(e.g. `from ledgerly.core import settings`).
"""

from .config import settings  # noqa: F401
