from app.business.subscription.models import Customer, Subscription, SubscriptionPlan, SubscriptionPlanProduct
from app.business.subscription.schemas import CustomerRead, PlanRead, SubscriptionRead

__all__ = [
    "Customer",
    "SubscriptionPlan",
    "SubscriptionPlanProduct",
    "Subscription",
    "CustomerRead",
    "PlanRead",
    "SubscriptionRead",
]
