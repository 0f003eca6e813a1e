"""Exceptions raised by the ARM and blob gateways and the cleanup helpers."""


class ArmError(Exception):
    """A non-success response from Azure Resource Manager or Blob Storage.

    Carries the HTTP status, the provider error code/message and the raw
    response body so callers can report the provider's own explanation.
    """

    def __init__(self, message, status_code=None, code=None, body=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.body = body

    def __str__(self):
        parts = []
        if self.status_code is not None:
            parts.append(f"HTTP {self.status_code}")
        if self.code:
            parts.append(self.code)
        prefix = " ".join(parts)
        return f"{prefix}: {self.message}" if prefix else self.message


class ResourceNotFoundError(ArmError):
    """The resource does not exist (HTTP 404)."""


class DeploymentFailedError(ArmError):
    """The deployment reached a failed/canceled state or timed out."""


class LeaseNotPresentError(ArmError):
    """Break-lease was requested on a blob that holds no lease."""


class InventoryError(Exception):
    """The deployment's operations could not be listed."""


class DiskLookupError(Exception):
    """The build VM's OS disk could not be determined."""


class UnsupportedResourceError(Exception):
    """No deleter is registered for a resource type."""
