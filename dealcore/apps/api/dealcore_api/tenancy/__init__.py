"""Tenant (county) boundary resolution."""
