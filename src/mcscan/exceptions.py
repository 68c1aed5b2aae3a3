"""Error types shared by the scanner, the store and the API."""


class ScanEngineError(Exception):
    """Base error. Carries a machine-readable code and an HTTP status."""

    error_code = "SCAN_ENGINE_ERROR"
    status_code = 500

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self):
        response = {"error_code": self.error_code, "message": self.message}
        if self.details:
            response["details"] = self.details
        return response


class ValidationError(ScanEngineError):
    """Scan parameters rejected before any network activity."""

    error_code = "VALIDATION_ERROR"
    status_code = 400


class InvalidAddressError(ValidationError):
    """Not a dotted-quad IPv4 address."""

    error_code = "INVALID_ADDRESS"

    def __init__(self, value, reason="Invalid IPv4 address"):
        super().__init__(f"{reason}: {value!r}", details={"value": value})


class ConfigError(ScanEngineError):
    error_code = "CONFIG_ERROR"


class StoreError(ScanEngineError):
    """The document store could not be reached or rejected a request."""

    error_code = "STORE_ERROR"
