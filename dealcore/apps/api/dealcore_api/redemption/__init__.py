"""Voucher redemption."""
