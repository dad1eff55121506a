# utils/exceptions.py


class PaymentEngineError(Exception):
    """Base class for payment engine errors."""


class InvalidPaymentJob(PaymentEngineError, ValueError):
    """Malformed payment job, rejected before it reaches the queue."""

    def __init__(self, message, fields=None):
        super().__init__(message)
        self.fields = list(fields or [])


class ChainError(PaymentEngineError):
    """Chain client failure."""


class ChainSubmissionError(ChainError):
    """Transfer could not be built, signed or broadcast."""


class ChainTimeoutError(ChainError):
    """Confirmation was not observed within the client's timeout. Retryable."""


class ChainTransactionFailed(ChainError):
    """The chain reports the transaction as failed. Never retried."""

    def __init__(self, message, tx_hash=None):
        super().__init__(message)
        self.tx_hash = tx_hash


class UnrecordedTransferError(PaymentEngineError):
    """A transfer was broadcast but its ledger record could not be written. Never retried."""

    def __init__(self, message, tx_hash=None):
        super().__init__(message)
        self.tx_hash = tx_hash


class RetryablePaymentError(PaymentEngineError):
    """Raised to the queue so the job is rescheduled for another attempt."""

    def __init__(self, message, attempt, delay=None):
        super().__init__(message)
        self.attempt = attempt
        self.delay = delay
