# core/exceptions.py
"""
Error taxonomy shared by the booking, ledger and payout services.

Services raise these; views translate them into JSON responses through
core.views.api_view using ``status_code``.
"""


class MarketplaceError(Exception):
    status_code = 400
    default_message = 'Request could not be processed'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(MarketplaceError):
    """Malformed or out-of-range input."""
    status_code = 400
    default_message = 'Invalid input'


class PermissionDenied(MarketplaceError):
    status_code = 403
    default_message = 'Not authorized'


class NotFoundError(MarketplaceError):
    status_code = 404
    default_message = 'Not found'


class DuplicateError(MarketplaceError):
    """Unique constraint still violated after the internal retry."""
    status_code = 409
    default_message = 'Duplicate record'


class StateConflictError(MarketplaceError):
    """A guarded state transition was attempted from the wrong state."""
    status_code = 409
    default_message = 'Invalid state transition'

    def __init__(self, message=None, current_status=None):
        self.current_status = current_status
        super().__init__(message)


class GatewayError(MarketplaceError):
    """Payment gateway call failed. Callers may retry with backoff."""
    status_code = 502
    default_message = 'Payment gateway error'


class ReconciliationError(MarketplaceError):
    """A confirmed transaction whose order could not be brought in line."""
    status_code = 500
    default_message = 'Payment recorded but order could not be updated'

    def __init__(self, message=None, transaction_number=None, order_number=None):
        self.transaction_number = transaction_number
        self.order_number = order_number
        super().__init__(message)
