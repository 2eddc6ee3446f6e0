"""
storefront/billing/errors.py
----------------------------
Exceptions raised by the billing workflow. Routes translate them into
JSON error responses; `details` carries the machine-readable context.
"""


class InvoiceError(Exception):
    """Base class for billing failures. Maps to HTTP 400 unless overridden."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {'error': str(self), 'details': self.details}


class DraftNotFoundError(InvoiceError):
    status_code = 404


class InsufficientStockError(InvoiceError):
    """A line asks for more units than the variant / product has."""
    status_code = 409

    def __init__(self, description: str, available: int, requested: int):
        super().__init__(
            f'Not enough stock for {description}. '
            f'Available: {available}, requested: {requested}',
            details={'description': description, 'available': available, 'requested': requested},
        )
        self.description = description
        self.available = available
        self.requested = requested


class ReasonRequiredError(InvoiceError):
    """Downgrading a status (or granting a discount) needs a written reason."""
    status_code = 409
