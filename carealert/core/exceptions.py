class CareAlertError(Exception):
    """Base class for domain errors"""

    status_code = 500

class NotFoundError(CareAlertError):
    status_code = 404

class ValidationError(CareAlertError):
    status_code = 400

class AlertCreationError(CareAlertError):
    """The alert could not be persisted; nothing was dispatched"""

class InvalidStatusTransition(CareAlertError):
    status_code = 409
