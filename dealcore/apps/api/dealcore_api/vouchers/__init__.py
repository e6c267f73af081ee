"""Voucher inventory, allowance guard and audit trail."""
