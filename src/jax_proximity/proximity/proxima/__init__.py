from .core import (
    BudgetKind,
    DistanceMode,
    ProximaBudget,
    ProximaCache,
    ProximaOutput,
    ProximaQueryResult,
)
from .proxima1 import Proxima1Cache, proxima1_bounds
from .proxima2 import Proxima2Cache, proxima2_bounds

__all__ = [
    "BudgetKind",
    "DistanceMode",
    "ProximaBudget",
    "ProximaCache",
    "ProximaOutput",
    "ProximaQueryResult",
    "Proxima1Cache",
    "Proxima2Cache",
    "proxima1_bounds",
    "proxima2_bounds",
]
