"""
Marketplace Service - orders, inventory reservation and mobile-money payments
"""
__version__ = "1.0.0"
