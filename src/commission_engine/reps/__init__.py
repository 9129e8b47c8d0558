"""Sales representative accounts."""

from .accounts import QuotaPeriod, RepDirectory, SalesRepAccount

__all__ = [
    "QuotaPeriod",
    "RepDirectory",
    "SalesRepAccount",
]
