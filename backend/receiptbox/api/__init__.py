"""API package.

This exposes router modules to simplify test imports like:
	from receiptbox.api.routes.bulk import router
"""

__all__ = [
	"routes",
]
