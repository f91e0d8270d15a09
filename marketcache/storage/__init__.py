"""
Storage Package

Storage gateway contract, its SQL adapter (marketcache.storage.sql) and the
unavailability ledger.
"""
from marketcache.storage.gateway import (
    CachedEntity,
    StorageGateway,
    SymbolKey,
    SymbolPage,
    SymbolQuery,
    SortDirection,
    SortField,
    UnavailabilityRecord,
)
from marketcache.storage.ledger import UnavailabilityLedger

__all__ = [
    "CachedEntity",
    "StorageGateway",
    "SymbolKey",
    "SymbolPage",
    "SymbolQuery",
    "SortDirection",
    "SortField",
    "UnavailabilityRecord",
    "UnavailabilityLedger",
]
