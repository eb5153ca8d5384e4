from app.business.collections.models import CollectionOrder, CollectionOrderCycle
from app.business.collections.schemas import (
    AutomatedCollectionReport,
    CollectionOrderRead,
    CollectionResult,
    CollectionRouteSheet,
    ManualCollectionRequest,
    ManualCollectionResult,
)

__all__ = [
    "CollectionOrder",
    "CollectionOrderCycle",
    "AutomatedCollectionReport",
    "CollectionOrderRead",
    "CollectionResult",
    "CollectionRouteSheet",
    "ManualCollectionRequest",
    "ManualCollectionResult",
]
