# errors.py
# Exception taxonomy shared by the executor and its collaborators.
# Handlers raise these; the executor alone decides retry vs. drop.


class AllModelsFailedError(Exception):
    """Raised when every model in the fallback list has failed."""


class PlanParseError(Exception):
    """Raised when a plan cannot be produced, parsed or validated."""


class SearchError(Exception):
    """Raised when the search provider fails (not on an empty result)."""


class MemoryStoreError(Exception):
    """Raised when embedding generation or the memory store fails."""


class DeviceDataError(Exception):
    """Raised when the device API fails for a reason other than missing data."""


class TokenExpiredError(DeviceDataError):
    """Raised when the device API rejects the access token (HTTP 401)."""


class AuthorizationRequiredError(DeviceDataError):
    """Raised when no valid or refreshable device credential exists."""


class UnknownActionError(Exception):
    """Raised when no handler is registered for an action kind."""
