"""
Closed vocabularies for ledger and return records.

Values are persisted as their lowercase string form, so each enum subclasses
``str`` and compares equal to the stored column value.
"""

from __future__ import annotations

import enum


class TransactionType(str, enum.Enum):
    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"


class ReferenceType(str, enum.Enum):
    SALE = "sale"
    PURCHASE = "purchase"
    RETURN = "return"
    EXCHANGE = "exchange"
    MANUAL_ADJUSTMENT = "manual_adjustment"


class AdjustmentReason(str, enum.Enum):
    PHYSICAL_COUNT_CORRECTION = "physical_count_correction"
    DAMAGED_GOODS = "damaged_goods"
    EXPIRED = "expired"
    THEFT_LOSS = "theft_loss"
    FOUND_INVENTORY = "found_inventory"
    SUPPLIER_RETURN = "supplier_return"
    QUALITY_REJECTION = "quality_rejection"
    TRANSFER = "transfer"
    OTHER = "other"


class ReturnType(str, enum.Enum):
    RETURN = "return"
    EXCHANGE = "exchange"


class ReturnReason(str, enum.Enum):
    DEFECTIVE = "defective"
    WRONG_SIZE = "wrong_size"
    WRONG_COLOR = "wrong_color"
    CUSTOMER_CHANGED_MIND = "customer_changed_mind"
    DAMAGED = "damaged"
    OTHER = "other"


class ReturnStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class ReturnAction(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"
    COMPLETE = "complete"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    WALLET = "wallet"
    STORE_CREDIT = "store_credit"


class PaymentDirection(str, enum.Enum):
    TO_CUSTOMER = "to_customer"
    FROM_CUSTOMER = "from_customer"


class StockLevel(str, enum.Enum):
    OK = "ok"
    LOW = "low"
    CRITICAL = "critical"
