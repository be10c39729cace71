from fastapi import HTTPException, status

from .exceptions import RentalError

STATUS_CODES = {
    "NotFound": status.HTTP_404_NOT_FOUND,
    "Forbidden": status.HTTP_403_FORBIDDEN,
    "InvalidState": status.HTTP_409_CONFLICT,
    "Unavailable": status.HTTP_409_CONFLICT,
    "InvalidAmount": status.HTTP_400_BAD_REQUEST,
    "EmptyCart": status.HTTP_400_BAD_REQUEST,
    "AlreadyExists": status.HTTP_409_CONFLICT,
    "InvalidRequest": status.HTTP_400_BAD_REQUEST,
    "StoreFailure": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def http_error(exc: RentalError) -> HTTPException:
    """Translate a domain error into the HTTPException the routers raise."""
    return HTTPException(
        status_code=STATUS_CODES.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=exc.to_dict(),
    )
