"""
portal/errors.py
----------------
Typed failures of the requisition workflow.

Every error is local to the attempted transition: it is raised before the
ledger append (or the transaction is rolled back), so the ledger and the
cached projection never see a half-applied action.

Each error can carry the requisition's authoritative current state so the
caller can reconcile its view without a second round-trip. The app-level
handler in portal/__init__.py renders them as:

    {"error": <kind>, "message": <text>, "requisition": {...} | null}
"""


class WorkflowError(Exception):
    """Base class for every workflow failure."""
    kind        = 'workflow_error'
    status_code = 400

    def __init__(self, message, requisition=None):
        super().__init__(message)
        self.message     = message
        self.requisition = requisition

    def with_requisition(self, requisition):
        """Attach the current state (if not already attached) and return self."""
        if self.requisition is None:
            self.requisition = requisition
        return self

    def to_dict(self) -> dict:
        return {
            'error':       self.kind,
            'message':     self.message,
            'requisition': self.requisition.to_dict() if self.requisition is not None else None,
        }


class ValidationError(WorkflowError):
    """Malformed or incomplete requisition data. Carries {field: message}."""
    kind        = 'validation_error'
    status_code = 400

    def __init__(self, errors: dict, requisition=None):
        message = '; '.join(errors.values()) or 'Invalid requisition data.'
        super().__init__(message, requisition)
        self.errors = errors

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload['fields'] = self.errors
        return payload


class NotAuthorizedError(WorkflowError):
    """The actor lacks authority for the requested transition."""
    kind        = 'not_authorized'
    status_code = 403


class RequisitionNotFound(WorkflowError):
    kind        = 'not_found'
    status_code = 404


class InvalidTransitionError(WorkflowError):
    """The transition is not legal from the current status (stale or duplicate)."""
    kind        = 'invalid_transition'
    status_code = 409


class ConcurrencyConflictError(WorkflowError):
    """Lost the race to serialise on a requisition. Re-fetch and retry."""
    kind        = 'concurrency_conflict'
    status_code = 409


class RoutingGapError(WorkflowError):
    """No approver (or no tier) configured for a level the policy requires."""
    kind        = 'routing_gap'
    status_code = 422

    def __init__(self, message, department=None, level=None, requisition=None):
        super().__init__(message, requisition)
        self.department = department
        self.level      = level


class LedgerImmutableError(RuntimeError):
    """Raised when code tries to update or delete a committed audit entry."""
