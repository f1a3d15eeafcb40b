from .rating import RatingItem, RatingResult, RawRatingItem, to_rating_item

__all__ = ["RatingItem", "RatingResult", "RawRatingItem", "to_rating_item"]
