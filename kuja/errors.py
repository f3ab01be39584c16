"""
Domain errors raised by the service layer.

Services raise these; routers turn them into ``HTTPException`` via
``to_http_exception`` so the UI receives the server message to toast.
"""

from fastapi import HTTPException, status


class KujaError(Exception):
    """Base class for business-rule failures"""
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(KujaError):
    status_code = status.HTTP_400_BAD_REQUEST

class InvalidTravelDate(ValidationFailed):
    pass

class AmountMismatch(ValidationFailed):
    pass

class Forbidden(KujaError):
    status_code = status.HTTP_403_FORBIDDEN

class NotFound(KujaError):
    status_code = status.HTTP_404_NOT_FOUND

class Conflict(KujaError):
    status_code = status.HTTP_409_CONFLICT

class CapacityExceeded(Conflict):
    pass

class InsufficientSeats(Conflict):
    pass

class PackageUnavailable(Conflict):
    pass

class InvalidTransition(Conflict):
    pass

class AlreadyFinal(Conflict):
    pass

class PaymentNotAllowed(Conflict):
    pass

class PaymentInProgress(Conflict):
    pass

class PaymentFailed(KujaError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED

class GatewayError(KujaError):
    """The external payment gateway could not be reached or rejected the call"""
    status_code = status.HTTP_502_BAD_GATEWAY


def to_http_exception(error: KujaError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.message)
