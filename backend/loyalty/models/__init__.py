from .users import User, SessionToken
from .promotions import Promotion, PromotionUsage, transaction_promotions
from .events import Event, event_organizers, event_guests
from .transactions import (
    Transaction,
    PurchaseTransaction,
    AdjustmentTransaction,
    RedemptionTransaction,
    TransferTransaction,
    EventTransaction,
)

__all__ = [
    'User', 'SessionToken',
    'Promotion', 'PromotionUsage', 'transaction_promotions',
    'Event', 'event_organizers', 'event_guests',
    'Transaction', 'PurchaseTransaction', 'AdjustmentTransaction',
    'RedemptionTransaction', 'TransferTransaction', 'EventTransaction',
]
