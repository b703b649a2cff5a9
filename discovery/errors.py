"""
Error taxonomy for the discovery service.
Each error knows its HTTP status, a machine-readable code, and whether a client may retry.
"""

from typing import Any, Dict, Optional


class DiscoveryError(Exception):
	"""Base error for discovery failures."""

	code = 'discovery_error'
	status_code = 500
	retryable = False

	def __init__(self, message: str, code: Optional[str] = None):
		super().__init__(message)
		self.message = message
		if code:
			self.code = code

	def to_payload(self) -> Dict[str, Any]:
		return {'error': {'code': self.code, 'message': self.message, 'retryable': self.retryable}}


class ValidationError(DiscoveryError):
	"""Empty or malformed query, out-of-range weight override. Rejected before any external call."""

	code = 'invalid_query'
	status_code = 400


class NotFoundError(DiscoveryError):
	"""A referenced record does not exist."""

	code = 'not_found'
	status_code = 404


class ProviderError(DiscoveryError):
	"""Embedding or generation provider failed or timed out."""

	code = 'provider_unavailable'
	status_code = 503
	retryable = True


class DatastoreError(DiscoveryError):
	"""Fused search or lookup failed. Fatal for the current request."""

	code = 'datastore_unavailable'
	status_code = 503
	retryable = True


class RateLimitError(DiscoveryError):
	"""Quota exhausted. Callers must wait until reset_at (epoch ms) before retrying."""

	code = 'rate_limited'
	status_code = 429

	def __init__(self, message: str, limit: int, remaining: int, reset_at: int):
		super().__init__(message)
		self.limit = limit
		self.remaining = remaining
		self.reset_at = reset_at

	def to_payload(self) -> Dict[str, Any]:
		payload = super().to_payload()
		payload['error'].update({'remaining': self.remaining, 'resetAt': self.reset_at})
		return payload


class AnalyticsError(DiscoveryError):
	"""Analytics sink failure. Logged only, never surfaced."""

	code = 'analytics_failed'
