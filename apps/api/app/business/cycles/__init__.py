from app.business.cycles.models import CyclePayment, SubscriptionCycle, SubscriptionCycleDetail
from app.business.cycles.schemas import CycleRead, QuotaValidation, SequenceIntegrityReport

__all__ = [
    "SubscriptionCycle",
    "SubscriptionCycleDetail",
    "CyclePayment",
    "CycleRead",
    "QuotaValidation",
    "SequenceIntegrityReport",
]
