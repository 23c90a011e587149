"""
                        Services Module

Business logic behind the HTTP surface.

Services:
    - orders: order lifecycle engine (state machine, versioned mutations)
    - tables: table registry and occupancy administration
    - catalog: read-only menu lookups
    - audit: append-only audit sink
    - ledger: file-locked Excel ledger of closed orders
"""

from tableside.services.ledger import LedgerExporter

__all__ = ["LedgerExporter"]
