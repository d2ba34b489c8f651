"""Merchant/program registry."""

from .registry import MerchantRegistry, key_slot

__all__ = ["MerchantRegistry", "key_slot"]
