"""
Shopper personalization.

Preferences are picked up from what the shopper writes (colours, styles,
product words, price bounds) and merged into their profile. Products they
were shown or clicked form a recency list. Both feed a score boost when
candidates are ranked for recommendations and search, and both are handed
to upstream webhooks as `userPreferences` / `recentProducts`.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from concierge.classifier import STOPWORDS

MAX_PREFERENCE_VALUES = 10
BROWSING_HISTORY_LIMIT = 50
INTERACTION_LIMIT = 100
RECENT_PRODUCTS_LIMIT = 10

RECENT_BOOST = 10
PRICE_BOOST = 5
TERM_BOOST = 3

COLOR_WORDS = {
    "black", "white", "red", "blue", "green", "yellow", "pink", "purple", "orange",
    "brown", "grey", "gray", "beige", "navy", "gold", "silver", "cream", "teal",
}
STYLE_WORDS = {
    "casual", "formal", "modern", "vintage", "classic", "minimalist", "sporty",
    "elegant", "boho", "rustic", "handmade", "organic", "luxury", "retro",
}

# words that come with a price bound, not a product
PRICE_WORDS = {
    "under", "below", "less", "than", "cheaper", "over", "above", "more", "least",
    "between", "from", "max", "maximum", "price", "cost", "dollars",
}

NOT_CATEGORIES = STOPWORDS | PRICE_WORDS | COLOR_WORDS | STYLE_WORDS

_NUMBER = r"\$?\s?(\d+(?:\.\d{1,2})?)"
PRICE_BETWEEN = re.compile(r"\b(?:between|from)\s+" + _NUMBER + r"\s*(?:and|to|-)\s*" + _NUMBER, re.IGNORECASE)
PRICE_UNDER = re.compile(r"\b(?:under|below|less than|cheaper than|up to|max(?:imum)?)\s+" + _NUMBER, re.IGNORECASE)
PRICE_OVER = re.compile(r"\b(?:over|above|more than|at least)\s+" + _NUMBER, re.IGNORECASE)


def _unique_tail(values: List[str], limit: int) -> List[str]:
    seen = []
    for value in values:
        if value in seen:
            seen.remove(value)
        seen.append(value)
    return seen[-limit:]


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str) and v]


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


@dataclass
class UserPreferences:
    favorite_colors: List[str] = field(default_factory=list)
    favorite_categories: List[str] = field(default_factory=list)
    styles: List[str] = field(default_factory=list)
    price_min: Optional[float] = None
    price_max: Optional[float] = None

    @property
    def has_price_range(self) -> bool:
        return self.price_min is not None or self.price_max is not None

    @property
    def terms(self) -> List[str]:
        return self.favorite_categories + self.favorite_colors + self.styles

    def query_terms(self, limit: int) -> List[str]:
        """Newest product words first, then newest colours"""
        return (self.favorite_categories[::-1] + self.favorite_colors[::-1])[:limit]

    def is_empty(self) -> bool:
        return not self.terms and not self.has_price_range

    def merge(self, other: "UserPreferences") -> "UserPreferences":
        """Newer values win; list entries keep the most recent few"""
        price_known = other.has_price_range
        return UserPreferences(
            favorite_colors=_unique_tail(self.favorite_colors + other.favorite_colors, MAX_PREFERENCE_VALUES),
            favorite_categories=_unique_tail(self.favorite_categories + other.favorite_categories, MAX_PREFERENCE_VALUES),
            styles=_unique_tail(self.styles + other.styles, MAX_PREFERENCE_VALUES),
            price_min=other.price_min if price_known else self.price_min,
            price_max=other.price_max if price_known else self.price_max,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "favoriteColors": self.favorite_colors,
            "favoriteCategories": self.favorite_categories,
            "styles": self.styles,
            "priceRange": {"min": self.price_min, "max": self.price_max} if self.has_price_range else None,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "UserPreferences":
        if not isinstance(data, dict):
            return cls()
        price = data.get("priceRange") if isinstance(data.get("priceRange"), dict) else {}
        return cls(
            favorite_colors=_str_list(data.get("favoriteColors")),
            favorite_categories=_str_list(data.get("favoriteCategories")),
            styles=_str_list(data.get("styles")),
            price_min=_number(price.get("min")),
            price_max=_number(price.get("max")),
        )


@dataclass
class PersonalizationContext:
    preferences: UserPreferences = field(default_factory=UserPreferences)
    recent_products: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return self.preferences.is_empty() and not self.recent_products

    def to_webhook(self) -> Dict[str, Any]:
        return {
            "userPreferences": self.preferences.to_dict(),
            "recentProducts": self.recent_products[:RECENT_PRODUCTS_LIMIT],
        }


def extract_preferences(text: str, search_query: Optional[str] = None) -> UserPreferences:
    """Colours, styles and price bounds from the message; product words from the search query"""
    if not isinstance(text, str):
        return UserPreferences()
    words = re.findall(r"[a-z]+", text.lower())
    prefs = UserPreferences(
        favorite_colors=_unique_tail([w for w in words if w in COLOR_WORDS], MAX_PREFERENCE_VALUES),
        styles=_unique_tail([w for w in words if w in STYLE_WORDS], MAX_PREFERENCE_VALUES),
    )

    if search_query:
        categories = [
            w for w in re.findall(r"[a-z]+", search_query.lower())
            if len(w) > 2 and w not in NOT_CATEGORIES
        ]
        prefs.favorite_categories = _unique_tail(categories, MAX_PREFERENCE_VALUES)

    between = PRICE_BETWEEN.search(text)
    under = PRICE_UNDER.search(text)
    over = PRICE_OVER.search(text)
    if between:
        low, high = sorted((float(between.group(1)), float(between.group(2))))
        prefs.price_min, prefs.price_max = low, high
    elif under or over:
        prefs.price_min = float(over.group(1)) if over else 0.0
        prefs.price_max = float(under.group(1)) if under else None
    return prefs


def learn_preferences(current: UserPreferences, text: str, search_query: Optional[str] = None) -> UserPreferences:
    return current.merge(extract_preferences(text, search_query))


def push_recent(history: List[str], product_ids: List[str], limit: int = BROWSING_HISTORY_LIMIT) -> List[str]:
    """Newest first, no duplicates"""
    fresh = [pid for pid in dict.fromkeys(product_ids) if pid]
    return (fresh + [pid for pid in history if pid not in fresh])[:limit]


def track_interaction(interactions: List[Dict[str, Any]], kind: str, product_id: Optional[str] = None,
                      limit: int = INTERACTION_LIMIT) -> List[Dict[str, Any]]:
    entry: Dict[str, Any] = {"type": kind, "timestamp": int(time.time() * 1000)}
    if product_id:
        entry["productId"] = product_id
    return (interactions + [entry])[-limit:]


def _price(product) -> Optional[float]:
    try:
        return float(product.price) if product.price is not None else None
    except (TypeError, ValueError):
        return None


def personalization_boost(product, context: Optional[PersonalizationContext]) -> int:
    """Score bonus for a ProductCandidate: seen recently, inside the price range, matching liked terms"""
    if context is None or context.is_empty():
        return 0

    boost = 0
    if product.id in context.recent_products[:RECENT_PRODUCTS_LIMIT]:
        boost += RECENT_BOOST

    prefs = context.preferences
    price = _price(product)
    if prefs.has_price_range and price is not None:
        low = prefs.price_min if prefs.price_min is not None else 0.0
        high = prefs.price_max if prefs.price_max is not None else float("inf")
        if low <= price <= high:
            boost += PRICE_BOOST

    haystack = " ".join([product.title] + list(product.tags)).lower()
    for term in prefs.terms:
        if term.lower() in haystack:
            boost += TERM_BOOST
    return boost
