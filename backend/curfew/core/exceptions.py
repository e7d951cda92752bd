class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

class ScheduleValidationError(AppError):
    """Raised when schedule or day-of-week data is rejected on a write path.

    The evaluator never raises this; malformed stored data degrades to inactive.
    """
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=422, details=details)

class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} with id {resource_id} not found",
            status_code=404,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )

class IdentityMismatchError(AppError):
    """Raised when the identity gate denies a device.

    The message is deliberately generic: it must not reveal which factor failed.
    """
    code = "IDENTITY_MISMATCH"

    def __init__(self):
        super().__init__(
            "Device identity could not be verified. Ask your guardian to update the device registration.",
            status_code=403,
            details={"error": self.code},
        )

class ConsentRequiredError(AppError):
    """Soft block: the human on the device has not yet approved management."""
    code = "CONSENT_REQUIRED"

    def __init__(self, device_id: str):
        super().__init__(
            "Consent is required on the managed device before it can be controlled.",
            status_code=428,
            details={"error": self.code, "device_id": device_id},
        )

class ConsentDeniedError(AppError):
    code = "CONSENT_DENIED"

    def __init__(self, device_id: str):
        super().__init__(
            "Management of this device was declined on the device.",
            status_code=403,
            details={"error": self.code, "device_id": device_id},
        )

class ConsentAlreadyRecordedError(AppError):
    """Consent is a one-shot decision per registration event."""
    def __init__(self, device_id: str, consent_status: str):
        super().__init__(
            "Consent has already been recorded for this registration.",
            status_code=409,
            details={"device_id": device_id, "consent_status": consent_status},
        )

class InvalidStageTransition(AppError):
    def __init__(self, current: str, event: str):
        super().__init__(
            f"Event '{event}' is not allowed in stage '{current}'",
            status_code=409,
            details={"stage": current, "event": event},
        )

class TransientStoreError(AppError):
    """Raised when the storage collaborator fails; callers apply their own retry policy."""
    def __init__(self, operation: str):
        super().__init__(
            f"Storage operation '{operation}' failed; retry later.",
            status_code=503,
            details={"operation": operation},
        )
