import re
from typing import Dict, Optional

from widget import config

POSITIVE_COLOR = "#10b981"
NEGATIVE_COLOR = "#f59e0b"

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{6})$")


def adjust_color(color: str, amount: int) -> str:
    """Lighten (positive amount) or darken a #rrggbb colour"""
    match = _HEX_RE.match(color or "")
    if not match:
        return color
    value = match.group(1)
    channels = [int(value[i:i + 2], 16) for i in (0, 2, 4)]
    channels = [max(0, min(255, c + amount)) for c in channels]
    return "#" + "".join(f"{c:02x}" for c in channels)


def sentiment_theme(sentiment: Optional[str], primary_color: Optional[str] = None) -> Dict[str, str]:
    primary = primary_color if primary_color and _HEX_RE.match(primary_color) else config.DEFAULT_PRIMARY_COLOR
    if sentiment == "positive":
        accent = POSITIVE_COLOR
    elif sentiment == "negative":
        accent = NEGATIVE_COLOR
    else:
        sentiment = "neutral"
        accent = primary

    return {
        "sentiment": sentiment,
        "accent": accent,
        "headerGradient": f"linear-gradient(135deg, {accent} 0%, {adjust_color(accent, -20)} 100%)",
    }
