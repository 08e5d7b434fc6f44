"""Infrastructure models package exports."""
from .base import Base, metadata
from .flow import PaymentFlowModel
from .ledger import AccountBalanceModel, LedgerTransactionModel
from .idempotency import IdempotencyRecordModel
from .webhook import WebhookOutboxModel
from .directory import CardModel, MerchantModel, ApiKeyModel

__all__ = [
    "Base",
    "metadata",
    "PaymentFlowModel",
    "AccountBalanceModel",
    "LedgerTransactionModel",
    "IdempotencyRecordModel",
    "WebhookOutboxModel",
    "CardModel",
    "MerchantModel",
    "ApiKeyModel",
]
