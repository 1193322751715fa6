"""API package.

This exposes router modules to simplify test imports like:
	from receipt_intake.api.routes.email_webhooks import router
"""

__all__ = [
	"routes",
]
