"""dealcore API: transactional voucher allocation for county-scoped deal marketplaces."""

__version__ = "0.3.0"
