"""API package.

This exposes router modules to simplify test imports like:
	from ledgerly.api.routes.transactions import router
"""

__all__ = [
	"routes",
]
