"""Error taxonomy shared by the gateway, the workflow engine and the routes.

Every error carries an HTTP status code and a stable ``error`` code that the
JSON error handler renders next to the human readable message.
"""

from typing import Dict, Optional

from flask import jsonify


class WorkflowError(Exception):
    status_code = 500
    error = "internal_error"
    default_message = "Unexpected error."

    def __init__(self, message: Optional[str] = None, **details):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"error": self.error, "message": self.message}
        payload.update(self.details)
        return payload


class AuthenticationFailure(WorkflowError):
    status_code = 401
    error = "unauthorized"
    default_message = "Authentication required."


class AuthorizationFailure(WorkflowError):
    status_code = 403
    error = "forbidden"
    default_message = "You need additional permissions to perform this action."


class NotFound(WorkflowError):
    status_code = 404
    error = "not_found"
    default_message = "Resource not found."


class InvalidInput(WorkflowError):
    status_code = 400
    error = "invalid_input"
    default_message = "Invalid request payload."


class InvalidStatus(InvalidInput):
    error = "invalid_status"
    default_message = "Unknown status value."


class InvalidAction(InvalidInput):
    error = "invalid_action"
    default_message = "Invalid action."


class IllegalTransition(WorkflowError):
    status_code = 409
    error = "illegal_transition"
    default_message = "This status change is not allowed."


class DependencyFailure(WorkflowError):
    status_code = 500
    error = "dependency_failure"
    default_message = "A backing service is unavailable. Please retry."

    def to_dict(self) -> Dict[str, object]:
        payload = super().to_dict()
        payload["retryable"] = True
        return payload


def error_response(exc: WorkflowError):
    return jsonify(exc.to_dict()), exc.status_code
