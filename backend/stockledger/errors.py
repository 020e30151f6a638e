# Overview: Maps service exceptions to JSON error responses.

from flask import jsonify

from .services.return_workflow import IllegalTransitionError, ReconciliationError, ReturnError
from .validation import ConcurrencyConflictError, ConflictError, NotFoundError, ValidationError

# Checked in order; subclasses before their bases
STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (ConcurrencyConflictError, 409),
    (ConflictError, 409),
    (IllegalTransitionError, 409),
    (ReconciliationError, 422),
    (ReturnError, 409),
)

HANDLED_ERRORS = tuple(cls for cls, _status in STATUS_BY_ERROR)


def error_response(exc: Exception):
    """JSON body {"error", "code"} with the status for the exception type."""
    status = 500
    for cls, code in STATUS_BY_ERROR:
        if isinstance(exc, cls):
            status = code
            break

    body = {"error": str(exc), "code": getattr(exc, "code", "error")}
    if getattr(exc, "retryable", False):
        body["retryable"] = True
    return jsonify(body), status
