"""
Lexical classifier for shopper messages.

Maps raw text to an intent, a coarse sentiment and a best-effort language.
Rules are evaluated in table order: support intents first, then the
specific product intents, then generic search. Anything unmatched is
general chat.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Tuple

BESTSELLERS = "BESTSELLERS"
NEW_ARRIVALS = "NEW_ARRIVALS"
ON_SALE = "ON_SALE"
RECOMMENDATIONS = "RECOMMENDATIONS"
PRODUCT_SEARCH = "PRODUCT_SEARCH"
SHIPPING = "SHIPPING"
RETURNS = "RETURNS"
TRACK_ORDER = "TRACK_ORDER"
HELP = "HELP"
GENERAL_CHAT = "GENERAL_CHAT"

PRODUCT_INTENTS = frozenset([BESTSELLERS, NEW_ARRIVALS, ON_SALE, RECOMMENDATIONS, PRODUCT_SEARCH])
SUPPORT_INTENTS = frozenset([SHIPPING, RETURNS, TRACK_ORDER, HELP])
INTENTS = PRODUCT_INTENTS | SUPPORT_INTENTS | {GENERAL_CHAT}

POSITIVE = "positive"
NEGATIVE = "negative"
NEUTRAL = "neutral"
SENTIMENTS = frozenset([POSITIVE, NEGATIVE, NEUTRAL])

DEFAULT_LANGUAGE = "en"
LANGUAGES = ("en", "fr", "es", "de", "pt", "it")


def _rule(*alternatives: str) -> Pattern:
    return re.compile(r"\b(" + "|".join(alternatives) + r")\b", re.IGNORECASE)


INTENT_RULES: List[Tuple[str, Pattern]] = [
    # support
    (TRACK_ORDER, _rule(
        r"track(ing)?", r"where\s+is\s+my\s+(order|package|parcel)", r"order\s+status",
        r"suivi", r"rastrear", r"sendungsverfolgung", r"rastreio", r"tracciare",
    )),
    (RETURNS, _rule(
        r"returns?", r"returning", r"refunds?", r"exchanges?", r"send\s+(it\s+)?back",
        r"retour", r"rembours\w*", r"devoluci[oó]n", r"reembolso", r"r[uü]ckgabe",
        r"erstattung", r"devolu[cç][aã]o", r"reso", r"rimborso",
    )),
    (SHIPPING, _rule(
        r"ship(ping|ped|s)?", r"deliver(y|ies|ed)?", r"postage", r"courier",
        r"livraison", r"env[ií]os?", r"entrega", r"versand", r"lieferung",
        r"frete", r"spedizione", r"consegna",
    )),
    (HELP, _rule(
        r"help", r"support", r"assist(ance)?", r"contact", r"(speak|talk)\s+to\s+(a\s+)?(human|person|agent)",
        r"problem", r"issue", r"aide", r"ayuda", r"hilfe", r"ajuda", r"aiuto",
    )),
    # product discovery
    (BESTSELLERS, _rule(
        r"best[\s-]?sell(ers?|ing)", r"top[\s-]?sell(ers?|ing)", r"(most\s+)?popular",
        r"trending", r"top\s+products", r"meilleures?\s+ventes", r"m[aá]s\s+vendidos",
        r"bestseller", r"mais\s+vendidos", r"pi[uù]\s+venduti",
    )),
    (NEW_ARRIVALS, _rule(
        r"new\s+arrivals?", r"new\s+in", r"newest", r"latest", r"just\s+in",
        r"new\s+(products|items|collection)", r"what'?s\s+new",
        r"nouveaut[eé]s?", r"novedades", r"neuheiten", r"novidades", r"novit[aà]",
    )),
    (ON_SALE, _rule(
        r"on\s+sale", r"sales?", r"discount(s|ed)?", r"deals?", r"clearance", r"promo(tion)?s?",
        r"offers?", r"soldes", r"promoci[oó]n", r"ofertas?", r"angebote?", r"rabatt",
        r"promo[cç][aã]o", r"saldi", r"sconti",
    )),
    (RECOMMENDATIONS, _rule(
        r"recommend\w*", r"suggest\w*", r"for\s+me", r"personali[sz]ed", r"what\s+should\s+i\s+(buy|get)",
        r"recommand\w*", r"recomienda\w*", r"empfehl\w*", r"recomend\w*", r"consigli\w*",
    )),
]

SEARCH_RULE = _rule(
    r"show\s+me", r"looking\s+for", r"search(ing)?(\s+for)?", r"find", r"need", r"want",
    r"do\s+you\s+(have|sell|carry)", r"any", r"products?", r"items?", r"buy",
    r"price", r"how\s+much", r"cost", r"size", r"colou?r", r"in\s+stock",
    r"cherche", r"busco", r"suche", r"procuro", r"cerco",
)

SEARCH_FILLER = [
    r"can\s+you", r"could\s+you", r"please", r"show\s+me", r"looking\s+for", r"i'?m",
    r"searching\s+for", r"search\s+for", r"search", r"find\s+me", r"find", r"i\s+need",
    r"i\s+want", r"need", r"want", r"do\s+you\s+(have|sell|carry)", r"any", r"some",
    r"how\s+much\s+(is|are)", r"in\s+stock",
]
_SEARCH_FILLER_RE = re.compile(r"\b(" + "|".join(SEARCH_FILLER) + r")\b", re.IGNORECASE)

STOPWORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "me", "my", "your", "you", "i", "is", "are", "it", "this",
    "that", "what", "which", "have", "has", "do", "does",
}

POSITIVE_CUES = _rule(
    "great", "amazing", "awesome", "love", "perfect", "excellent", "wonderful",
    "happy", "thanks", "thank you", "merci", "gracias", "danke", "obrigad[oa]", "grazie",
)
NEGATIVE_CUES = _rule(
    "bad", "terrible", "awful", "hate", "disappointed", "frustrated", "angry",
    "upset", "worst", "useless", "broken", "damaged",
)

LANGUAGE_RULES: List[Tuple[str, Pattern]] = [
    ("fr", _rule("bonjour", "salut", "merci", "montre", "produits?", "cherche", "voudrais", "pourrais", "livraison")),
    ("es", _rule("hola", "gracias", "productos?", "busco", "quiero", "puedo", "env[ií]o")),
    ("de", _rule("hallo", "danke", "produkte?", "suche", "m[oö]chte", "kann", "versand")),
    ("pt", _rule("ol[aá]", "obrigad[oa]", "produtos?", "procuro", "gostaria", "frete")),
    ("it", _rule("ciao", "grazie", "prodott[oi]", "cerco", "vorrei", "spedizione")),
]

RULE_CONFIDENCE = 0.9
SEARCH_CONFIDENCE = 0.75
DEFAULT_CONFIDENCE = 0.5


@dataclass(frozen=True)
class Classification:
    intent: str = GENERAL_CHAT
    sentiment: str = NEUTRAL
    language: str = DEFAULT_LANGUAGE
    confidence: float = DEFAULT_CONFIDENCE
    search_query: Optional[str] = None

    @property
    def is_product_intent(self) -> bool:
        return is_product_intent(self.intent)

    @property
    def is_support_intent(self) -> bool:
        return is_support_intent(self.intent)


def is_product_intent(intent: str) -> bool:
    return intent in PRODUCT_INTENTS


def is_support_intent(intent: str) -> bool:
    return intent in SUPPORT_INTENTS


def extract_search_query(text: str) -> str:
    """Strip search filler and stopwords, leaving the thing being searched for"""
    cleaned = _SEARCH_FILLER_RE.sub(" ", text.lower())
    cleaned = re.sub(r"[^\w\s'-]", " ", cleaned)
    words = [w for w in cleaned.split() if w not in STOPWORDS]
    return " ".join(words)


def detect_intent(text: str) -> Tuple[str, float, Optional[str]]:
    for intent, pattern in INTENT_RULES:
        if pattern.search(text):
            return intent, RULE_CONFIDENCE, None

    if SEARCH_RULE.search(text):
        query = extract_search_query(text)
        if query:
            return PRODUCT_SEARCH, SEARCH_CONFIDENCE, query

    return GENERAL_CHAT, DEFAULT_CONFIDENCE, None


def detect_sentiment(text: str) -> str:
    positive = len(POSITIVE_CUES.findall(text))
    negative = len(NEGATIVE_CUES.findall(text))
    if positive > negative:
        return POSITIVE
    if negative > positive:
        return NEGATIVE
    return NEUTRAL


def detect_language(text: str, locale_hint: Optional[str] = None) -> str:
    if locale_hint and isinstance(locale_hint, str):
        hinted = locale_hint.strip().lower().replace("_", "-").split("-")[0]
        if hinted in LANGUAGES:
            return hinted

    for language, pattern in LANGUAGE_RULES:
        if pattern.search(text):
            return language
    return DEFAULT_LANGUAGE


def classify(text, locale_hint: Optional[str] = None) -> Classification:
    """Classify a shopper message. Never raises; junk input gets the defaults."""
    if not isinstance(text, str) or not text.strip():
        return Classification(language=detect_language("", locale_hint))

    normalized = re.sub(r"\s+", " ", text.strip())
    intent, confidence, query = detect_intent(normalized)

    return Classification(
        intent=intent,
        sentiment=detect_sentiment(normalized),
        language=detect_language(normalized, locale_hint),
        confidence=confidence,
        search_query=query,
    )
