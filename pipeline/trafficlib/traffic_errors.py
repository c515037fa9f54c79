"""Error taxonomy for traffic collection and analytics.

Run-wide problems (ConfigurationError) stop a fetch before any network
call. Everything else is scoped to a single repo/metric pair and is
recorded by the orchestrator while sibling metrics continue.
"""


#============================================
class TrafficError(RuntimeError):
	"""
	Base class for every error raised by trafficlib.
	"""


#============================================
class ConfigurationError(TrafficError):
	"""
	Raised when settings or credentials make a run impossible.
	"""


#============================================
class ValidationError(TrafficError):
	"""
	Raised when a caller passes an invalid repo, metric or date value.
	"""


#============================================
class PeriodFormatError(ValidationError):
	"""
	Raised when a period identifier is neither YYYY nor YYYY-MM.
	"""


#============================================
class ApiError(TrafficError):
	"""
	Raised when GitHub answers with a non-success status or error envelope.
	"""

	def __init__(self, message: str, status: int | None = None):
		super().__init__(message)
		self.status = status


#============================================
class AuthenticationError(ApiError):
	"""
	Raised on 401 responses (missing, expired or revoked token).
	"""


#============================================
class AuthorizationError(ApiError):
	"""
	Raised on 403 responses (token lacks push access to the repo).
	"""


#============================================
class RateLimitError(AuthorizationError):
	"""
	Raised when GitHub API rate limits block further requests.
	"""


#============================================
class NotFoundError(ApiError):
	"""
	Raised on 404 responses.
	"""


#============================================
class TransportError(TrafficError):
	"""
	Raised when the request never produced an HTTP response.
	"""


#============================================
class ParseError(TrafficError):
	"""
	Raised when a response body is empty, not JSON, or the wrong shape.
	"""


#============================================
class StorageError(TrafficError):
	"""
	Raised when a snapshot or marker cannot be written to disk.
	"""
