"""Warehouse error taxonomy.

Business-rule failures extend Protean's ``ValidationError`` so they carry the
usual ``messages`` dict, plus structured attributes naming the SKU, bin or
state the caller needs to act on. ``ConcurrentModification`` is transient and
only surfaces once internal retries are exhausted.
"""

from protean.exceptions import InvalidOperationError, ValidationError


class InsufficientInventory(ValidationError):
    """Not enough available stock in a bin to satisfy a reservation."""

    def __init__(self, sku: str, bin_id: str, requested: int, available: int, contended: bool = False):
        self.sku = sku
        self.bin_id = bin_id
        self.requested = requested
        self.available = available
        self.contended = contended
        if contended:
            message = f"Could not reserve {requested} of {sku} in bin {bin_id}: too much contention"
        else:
            message = f"Cannot reserve {requested} of {sku} in bin {bin_id}: only {available} available"
        super().__init__({"quantity": [message]})


class InvalidAdjustment(ValidationError):
    """A receipt, adjustment or move would break a bin or stock invariant."""

    def __init__(self, message: str, sku: str | None = None, bin_id: str | None = None):
        self.sku = sku
        self.bin_id = bin_id
        super().__init__({"adjustment": [message]})


class InvalidStateTransition(ValidationError):
    """The requested transition is not in the allowed graph for the current state."""

    def __init__(self, entity: str, current: str, target: str, expected: list[str] | None = None):
        self.entity = entity
        self.current = current
        self.target = target
        self.expected = sorted(expected or [])
        message = f"Cannot transition {entity} from {current} to {target}"
        if self.expected:
            message += f" (allowed from {current}: {', '.join(self.expected)})"
        super().__init__({"status": [message]})


class OrderAlreadyAllocated(ValidationError):
    """Duplicate allocation request for an order that already holds its stock."""

    def __init__(self, order_id: str, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__({"order_id": [f"Order {order_id} is already allocated (status {status})"]})


class SessionNotActive(ValidationError):
    """The pick session has not recorded any work, or is no longer open."""

    def __init__(self, session_id: str, status: str):
        self.session_id = session_id
        self.status = status
        super().__init__({"session_id": [f"Pick session {session_id} is not active (status {status})"]})


class ConcurrentModification(InvalidOperationError):
    """Optimistic update kept losing races and gave up."""

    def __init__(self, resource: str, key: str, attempts: int):
        self.resource = resource
        self.key = key
        self.attempts = attempts
        super().__init__(f"{resource} {key} changed concurrently; gave up after {attempts} attempts")
