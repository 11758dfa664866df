"""Report Credits error taxonomy.

Declined reservations and handler failures are recovered inside the job
orchestrator and never reach the caller as exceptions. The configuration
and persistence errors below do propagate.
"""


class CreditError(Exception):
    """Base exception for ledger and job settlement."""
    pass


class InvalidAmount(CreditError):
    """Amount is not a positive, finite monetary value."""
    pass


class InsufficientBalance(CreditError):
    """Available balance does not cover the requested amount."""

    def __init__(self, user_id: str, available, requested):
        self.user_id = user_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient balance for user {user_id}: available {available}, requested {requested}"
        )


class TransactionNotFound(CreditError):
    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} not found")


class InvalidTransactionState(CreditError):
    """Settlement attempted on a transaction that is no longer PENDING."""

    def __init__(self, transaction_id: str, status, message: str = None):
        self.transaction_id = transaction_id
        self.status = status
        super().__init__(message or f"Transaction {transaction_id} is already {status}")


class HoldMissing(CreditError):
    """A claimed confirm found neither the hold nor a record of consuming it."""

    def __init__(self, transaction_id: str, user_id: str):
        self.transaction_id = transaction_id
        self.user_id = user_id
        super().__init__(
            f"No hold or consumed marker for transaction {transaction_id} on account {user_id}"
        )


class HandlerFailure(CreditError):
    """External analysis raised or returned an unusable result."""
    pass


class HandlerNotRegistered(CreditError):
    """No analysis handler for a job type. Configuration error."""
    pass


class PricingNotFound(CreditError):
    """No active price for a job type."""
    pass


class ReservationPersistenceFailure(CreditError):
    """Store failed while taking a reservation. No job is kept."""
    pass


class LedgerPersistenceError(CreditError):
    """Store failed while recording a direct credit/debit."""
    pass


class SettlementReconciliationGap(CreditError):
    """Ledger and job disagree after the user-facing outcome was fixed."""

    def __init__(self, job_id: str, transaction_id: str, reason: str):
        self.job_id = job_id
        self.transaction_id = transaction_id
        self.reason = reason
        super().__init__(
            f"Settlement gap for job {job_id} (transaction {transaction_id}): {reason}"
        )
