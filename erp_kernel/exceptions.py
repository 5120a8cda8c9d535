"""
Typed Exception Hierarchy for the ERP Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every rejected action must tell the interface WHICH kind of failure happened
(auth vs. state vs. validation) so it can render an actionable message instead
of a generic "something went wrong".  Parsing message strings for that is
fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Every exception has a CATEGORY (the reason family shown to the user)
  4. Exceptions carry structured DATA (not just a message string)

Example - WRONG way:
    try:
        engine.decide(ref, principal, Approve())
    except Exception as e:
        if "already" in str(e):
            show("already processed")

Example - RIGHT way:
    try:
        engine.decide(ref, principal, Approve())
    except ConflictError as e:
        show(e.user_message)              # "just decided by someone else"
    except InvalidStateError as e:
        show(e.user_message)              # "already been processed"

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ErpKernelError (base)
    |
    +-- AuthenticationError
    |   +-- IdentityProviderUnavailableError
    |
    +-- AuthorizationError
    |
    +-- ValidationError
    |   +-- UnknownEntityTypeError
    |   +-- DuplicateDocumentError
    |
    +-- WorkflowStateError
    |   +-- InvalidStateError
    |   |   +-- ConflictError
    |   +-- BusyError
    |
    +-- DocumentNotFoundError
    |
    +-- DeliveryError
    |   +-- AuditDeliveryError
    |   +-- NotificationDeliveryError
    |
    +-- PermissionConfigError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | HTTP | When Raised
----------------|-----------------------------|------|----------------------------------
authentication  | AUTHENTICATION_FAILED       | 401  | No/invalid principal or token
                | IDENTITY_PROVIDER_UNAVAILABLE | 401 | Identity provider unreachable
authorization   | NOT_AUTHORIZED              | 403  | Valid principal, insufficient role
validation      | VALIDATION_FAILED           | 422  | Blank reject remarks, bad input
                | UNKNOWN_ENTITY_TYPE         | 422  | Entity type not registered
                | DUPLICATE_DOCUMENT          | 422  | Same human code opened twice
state           | INVALID_STATE               | 409  | Entity not in required state
                | DECISION_CONFLICT           | 409  | Concurrent decision race lost
                | ENTITY_BUSY                 | 423  | Per-entity lock wait timed out
not_found       | DOCUMENT_NOT_FOUND          | 404  | Entity reference does not exist
delivery        | AUDIT_DELIVERY_FAILED       |  -   | Audit append failed (logged)
                | NOTIFICATION_DELIVERY_FAILED|  -   | Notification retries exhausted
configuration   | PERMISSION_CONFIG_INVALID   | 500  | Bad permission table at load time
integrity       | IMMUTABILITY_VIOLATION      | 500  | Modifying audit/decided records

===============================================================================
PROPAGATION
===============================================================================

- Authorization and validation failures are raised BEFORE any mutation.
- State conflicts are detected at the commit boundary and never partially
  applied.
- Delivery failures are logged and surfaced separately; they are never
  raised into the primary operation.

===============================================================================
"""

from __future__ import annotations


class ErpKernelError(Exception):
    """
    Base exception for all ERP kernel errors.

    All subclasses define ``code`` (machine-readable), ``category`` (reason
    family) and ``http_status`` (used by the gateway when mapping to a
    response), plus a human ``user_message``.
    """

    code: str = "ERP_KERNEL_ERROR"
    category: str = "internal"
    http_status: int = 500
    user_message: str = "Something went wrong. Please try again."


# Authentication


class AuthenticationError(ErpKernelError):
    """No principal, invalid credentials, or invalid/expired token."""

    code: str = "AUTHENTICATION_FAILED"
    category: str = "authentication"
    http_status: int = 401
    user_message: str = "Your session is not valid. Please log in again."

    def __init__(self, reason: str = "not authenticated"):
        self.reason = reason
        super().__init__(f"Authentication failed: {reason}")


class IdentityProviderUnavailableError(AuthenticationError):
    """The identity provider could not be reached."""

    code: str = "IDENTITY_PROVIDER_UNAVAILABLE"

    def __init__(self, reason: str = "identity provider unreachable"):
        super().__init__(reason)


# Authorization


class AuthorizationError(ErpKernelError):
    """Valid principal whose role does not grant the requested action."""

    code: str = "NOT_AUTHORIZED"
    category: str = "authorization"
    http_status: int = 403
    user_message: str = "You do not have permission to perform this action."

    def __init__(self, role: str, module: str, action: str):
        self.role = role
        self.module = module
        self.action = action
        super().__init__(
            f"Role '{role}' is not authorized for {module}.{action}"
        )


# Validation


class ValidationError(ErpKernelError):
    """Input that the user can correct (e.g. missing rejection remarks)."""

    code: str = "VALIDATION_FAILED"
    category: str = "validation"
    http_status: int = 422
    user_message: str = "Please correct the highlighted input."

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class UnknownEntityTypeError(ValidationError):
    """Entity type is not registered with an owning module."""

    code: str = "UNKNOWN_ENTITY_TYPE"

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__("entity_type", f"'{entity_type}' is not an approvable entity type")


class DuplicateDocumentError(ValidationError):
    """A document with this human code already exists for the entity type."""

    code: str = "DUPLICATE_DOCUMENT"

    def __init__(self, entity_type: str, human_code: str):
        self.entity_type = entity_type
        self.human_code = human_code
        super().__init__("human_code", f"{entity_type} {human_code} already exists")


# Workflow state


class WorkflowStateError(ErpKernelError):
    """Base exception for workflow state errors."""

    code: str = "WORKFLOW_STATE_ERROR"
    category: str = "state"
    http_status: int = 409


class InvalidStateError(WorkflowStateError):
    """Entity is not in the state required by the requested transition."""

    code: str = "INVALID_STATE"
    user_message: str = "This request has already been processed."

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_status: str,
        required_status: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current_status
        self.required_status = required_status
        super().__init__(
            f"{entity_type} {entity_id} is {current_status}, "
            f"expected {required_status}"
        )


class ConflictError(InvalidStateError):
    """
    A concurrent transition on the same entity committed first.

    Detected at the commit boundary: the entity was in the required state
    when read, but the guarded UPDATE matched no row.
    """

    code: str = "DECISION_CONFLICT"
    user_message: str = "This was just decided by someone else. Please refresh."


class BusyError(WorkflowStateError):
    """The per-entity lock could not be acquired within the bounded wait."""

    code: str = "ENTITY_BUSY"
    http_status: int = 423
    user_message: str = "This document is being processed. Please try again."

    def __init__(self, entity_type: str, entity_id: str, timeout_seconds: float):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Timed out after {timeout_seconds}s waiting for {entity_type} {entity_id}"
        )


# Lookup


class DocumentNotFoundError(ErpKernelError):
    """Entity reference does not exist."""

    code: str = "DOCUMENT_NOT_FOUND"
    category: str = "not_found"
    http_status: int = 404
    user_message: str = "The requested document could not be found."

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


# Delivery (audit sink / notifications)


class DeliveryError(ErpKernelError):
    """Side-effect delivery failed. Logged, never fails the primary action."""

    code: str = "DELIVERY_FAILED"
    category: str = "delivery"


class AuditDeliveryError(DeliveryError):
    """An audit entry could not be persisted."""

    code: str = "AUDIT_DELIVERY_FAILED"

    def __init__(self, action: str, entity_id: str, reason: str):
        self.action = action
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Audit append failed for {action} on {entity_id}: {reason}")


class NotificationDeliveryError(DeliveryError):
    """A notification could not be delivered after all retries."""

    code: str = "NOTIFICATION_DELIVERY_FAILED"

    def __init__(self, sink: str, event_kind: str, attempts: int, reason: str):
        self.sink = sink
        self.event_kind = event_kind
        self.attempts = attempts
        self.reason = reason
        super().__init__(
            f"Notification {event_kind} via {sink} failed after {attempts} attempt(s): {reason}"
        )


# Configuration


class PermissionConfigError(ErpKernelError):
    """Permission table or workflow settings rejected at load time."""

    code: str = "PERMISSION_CONFIG_INVALID"
    category: str = "configuration"

    def __init__(self, location: str, reason: str):
        self.location = location
        self.reason = reason
        super().__init__(f"Invalid permission configuration at {location}: {reason}")


# Immutability


class ImmutabilityError(ErpKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"
    category: str = "integrity"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an audit entry or a decided document."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
