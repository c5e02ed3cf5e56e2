"""HTTP surface for checkout, payment status, webhooks and monitoring."""
