"""
Database models - import all models here so Alembic can discover them.
"""
from moneybridge.models.ledger import PaymentProject, DebtCategory, PaymentItem, PaymentRecord
from moneybridge.models.income_source import IncomeSource
from moneybridge.models.income_webhook import IncomeWebhook

__all__ = [
    "PaymentProject",
    "DebtCategory",
    "PaymentItem",
    "PaymentRecord",
    "IncomeSource",
    "IncomeWebhook",
]
