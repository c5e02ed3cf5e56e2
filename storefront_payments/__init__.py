"""
Storefront payment gateway integration.

Creates provider invoices for orders, caches provider credentials,
tracks one payment record per attempt and reconciles the provider's
eventually-consistent status through client-side polling.
"""

__version__ = "1.0.0"
