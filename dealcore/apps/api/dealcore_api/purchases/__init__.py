"""Purchase allocation and post-payment reconciliation."""
