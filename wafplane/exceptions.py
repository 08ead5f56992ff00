"""Error taxonomy surfaced by the ban management layer.

Each error carries the HTTP status it maps to. Cache failures never appear
here: they are absorbed inside the coordinator and only ever logged.
"""


class WafPlaneError(Exception):
    """Base class for errors that reach the HTTP boundary."""

    status_code: int = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(WafPlaneError):
    """Malformed input (address, CIDR, site id, request body). Never reaches the store."""

    status_code = 400


class NotFoundError(WafPlaneError):
    """No row matches the id/address under the caller's tenant."""

    status_code = 404


class InternalError(WafPlaneError):
    """Store transport failure or deadline exceeded. Safe to retry for idempotent calls."""

    status_code = 500
