"""Ledger module for payment and transaction records.

Payments are recorded once per external payment reference; transactions
point at the payment they belong to, and a payment's transaction list is
derived from those links.
"""

from .payments import (
    PaymentManager,
    PaymentNotFoundError,
    DuplicatePaymentError,
    PAYMENT_METHODS,
    PAYMENT_STATUSES,
    payment_to_dict
)
from .transactions import (
    TransactionManager,
    TransactionNotFoundError,
    DuplicateTransactionError,
    TRANSACTION_STATUSES,
    transaction_to_dict
)

__all__ = [
    'PaymentManager',
    'PaymentNotFoundError',
    'DuplicatePaymentError',
    'PAYMENT_METHODS',
    'PAYMENT_STATUSES',
    'payment_to_dict',
    'TransactionManager',
    'TransactionNotFoundError',
    'DuplicateTransactionError',
    'TRANSACTION_STATUSES',
    'transaction_to_dict'
]
