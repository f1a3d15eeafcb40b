from .scoring import rate_item, rate_items

__all__ = ["rate_item", "rate_items"]
