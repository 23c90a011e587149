"""
                Tableside POS

Order lifecycle backend for dine-in restaurants: guests order from
their table, the kitchen, floor staff and cashier advance the order
through a strict status machine guarded by optimistic versioning.

License: MIT
"""

__version__ = "1.0.0"
