from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from core import errors

STATUS_BY_CATEGORY = {
    errors.VALIDATION: status.HTTP_400_BAD_REQUEST,
    errors.PRECONDITION: status.HTTP_400_BAD_REQUEST,
    errors.CONFLICT: status.HTTP_409_CONFLICT,
    errors.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    errors.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    errors.EXTERNAL_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def logistics_exception_handler(exc, context):
    """
    Core errors become {"error": kind, "detail": message}; everything else
    goes through DRF's default handler.
    """
    if isinstance(exc, errors.LogisticsError):
        code = STATUS_BY_CATEGORY.get(exc.category, status.HTTP_400_BAD_REQUEST)
        return Response(exc.to_dict(), status=code)
    return exception_handler(exc, context)
