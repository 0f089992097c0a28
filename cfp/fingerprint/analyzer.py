"""
Heuristic classification of free-text model responses.

Everything here is a pure function of the response text and the business
name. ``ResponseAnalyzer`` is the seam the engine depends on, so the rules
can be swapped without touching aggregation or orchestration.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Tuple

from cfp.core.models import PromptCategory, Sentiment
from cfp.utils.names import acronym, clean_business_name, name_variations, strip_legal_suffix

EXACT_MATCH_CONFIDENCE = 0.95
VARIATION_MATCH_CONFIDENCE = 0.85
NO_MATCH_CONFIDENCE = 0.9

POSITIVE_INDICATORS = (
    "excellent", "outstanding", "great", "amazing", "fantastic", "wonderful",
    "professional", "reliable", "trustworthy", "reputable", "quality",
    "highly recommended", "top-rated", "best", "leading", "premier",
    "experienced", "skilled", "expert", "knowledgeable", "competent",
    "friendly", "helpful", "responsive", "efficient", "thorough",
    "satisfied", "pleased", "happy", "impressed", "delighted",
)

NEGATIVE_INDICATORS = (
    "terrible", "awful", "horrible", "disappointing", "poor", "bad",
    "unprofessional", "unreliable", "untrustworthy", "questionable",
    "avoid", "warning", "complaint", "complaints", "problem", "problems",
    "rude", "unhelpful", "slow", "inefficient", "careless",
    "overpriced", "low-quality", "subpar",
    "dissatisfied", "unhappy", "frustrated", "disappointed", "regret",
)

NEUTRAL_INDICATORS = (
    "okay", "average", "decent", "standard", "typical", "normal",
    "adequate", "acceptable", "reasonable", "fair", "moderate",
    "mixed", "varies", "depends", "sometimes", "generally",
)

IMPLICIT_POSITIVE = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"(?<!not )would\s+recommend",
        r"good\s+choice",
        r"solid\s+option",
        r"worth\s+considering",
        r"established\s+presence",
    )
]

IMPLICIT_NEGATIVE = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"would\s+not\s+recommend",
        r"be\s+careful",
        r"limited\s+information",
        r"don'?t\s+have\s+enough",
        r"insufficient\s+data",
    )
]

SENTIMENT_THRESHOLD = 0.3

RANKING_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"(?:number\s+|#)(\d+)\b",
        r"\b(\d+)(?:st|nd|rd|th)\s+(?:place|choice|option)",
        r"\branked\s+(?:#|number\s+)?(\d+)\b",
        r"\bposition\s+(\d+)\b",
    )
]
MAX_RANK = 10

_NUMBERED_LINE = re.compile(r"^\s*(\d{1,2})[.)]\s+(.+?)\s*$", re.MULTILINE)
_BULLET_LINE = re.compile(r"^[-*•]\s+(.+?)\s*$", re.MULTILINE)
_NAME_DELIMITERS = re.compile(r"\s+[-–—]\s+|:\s|\s*\(|,\s|\s+\|\s+")
_MARKDOWN = re.compile(r"[*_`#]+|\[|\]\([^)]*\)")

_INVALID_NAME_STARTS = re.compile(
    r"^(?:here are|i'd recommend|i recommend|to give you|that's a|i need|each of these|"
    r"these businesses|some top|top recommendations|recommendations for|a great|great question|"
    r"what you're|you're looking|looking for|"
    r"(?:and|or|but|if|when|where|why|how|is|are|was|were|be|been|being|can|could|should|"
    r"would|will|may|might|this|that|these|those|it|they|we|you|he|she)\s)",
    re.IGNORECASE,
)
_GENERIC_WORDS = {
    "quality", "professional", "local", "community", "excellence", "choice", "group",
    "services", "solutions", "location", "hours", "address", "phone", "website", "reviews",
    "pricing", "price", "specialties", "services offered",
}

COMMON_FALSE_POSITIVES = (
    "google", "facebook", "twitter", "linkedin", "instagram", "better business bureau",
    "bbb", "yelp", "tripadvisor", "angi", "nextdoor", "united states", "new york",
    "california", "texas", "monday", "tuesday", "wednesday", "thursday", "friday",
    "saturday", "sunday", "january", "february", "march", "april", "may", "june", "july",
    "august", "september", "october", "november", "december",
)


@dataclass
class MentionMatch:
    mentioned: bool
    confidence: float
    matched: Optional[str] = None


@dataclass
class SentimentReading:
    sentiment: Sentiment
    score: float
    confidence: float
    keywords: List[str] = field(default_factory=list)


@dataclass
class ResponseClassification:
    """Everything extracted from one response."""

    mentioned: bool
    sentiment: Sentiment
    confidence: float
    rank: Optional[int] = None
    competitors: List[str] = field(default_factory=list)
    sentiment_score: float = 0.0


class ResponseAnalyzer(Protocol):
    def classify(
        self, text: str, business_name: str, category: PromptCategory
    ) -> ResponseClassification: ...


def _word_pattern(phrase: str, ignore_case: bool = True) -> re.Pattern:
    flags = re.IGNORECASE if ignore_case else 0
    return re.compile(r"(?<!\w)" + re.escape(phrase) + r"(?!\w)", flags)


def _contains(text: str, phrase: str) -> bool:
    # Acronyms only count when written in capitals
    if phrase.isupper() and " " not in phrase:
        return bool(_word_pattern(phrase, ignore_case=False).search(text))
    return bool(_word_pattern(phrase).search(text))


def detect_mention(text: str, business_name: str) -> MentionMatch:
    """Exact name match first, then legal-suffix/article/acronym variations."""
    name = clean_business_name(business_name)
    if not name or not text:
        return MentionMatch(False, NO_MATCH_CONFIDENCE)
    if _contains(text, name):
        return MentionMatch(True, EXACT_MATCH_CONFIDENCE, name)
    for variation in name_variations(name):
        if _contains(text, variation):
            return MentionMatch(True, VARIATION_MATCH_CONFIDENCE, variation)
    return MentionMatch(False, NO_MATCH_CONFIDENCE)


def _count_indicators(text: str, indicators) -> List[str]:
    return [word for word in indicators if _word_pattern(word).search(text)]


def classify_sentiment(text: str, mentioned: bool) -> SentimentReading:
    """
    Keyword sentiment toward the business.

    Sentiment only matters when the business is mentioned; otherwise the
    reading is neutral. Score is (positive - negative) / total indicators.
    """
    if not mentioned:
        return SentimentReading(Sentiment.NEUTRAL, 0.0, 0.5)

    positive = _count_indicators(text, POSITIVE_INDICATORS)
    negative = _count_indicators(text, NEGATIVE_INDICATORS)
    neutral = _count_indicators(text, NEUTRAL_INDICATORS)
    total = len(positive) + len(negative) + len(neutral)

    if total == 0:
        pos_hits = sum(1 for p in IMPLICIT_POSITIVE if p.search(text))
        neg_hits = sum(1 for p in IMPLICIT_NEGATIVE if p.search(text))
        if pos_hits > neg_hits:
            return SentimentReading(Sentiment.POSITIVE, 0.5, 0.6)
        if neg_hits > pos_hits:
            return SentimentReading(Sentiment.NEGATIVE, -0.5, 0.6)
        return SentimentReading(Sentiment.NEUTRAL, 0.0, 0.8)

    score = (len(positive) - len(negative)) / total
    keywords = positive + negative + neutral
    if score > SENTIMENT_THRESHOLD:
        return SentimentReading(Sentiment.POSITIVE, score, min(0.95, 0.6 + score * 0.35), keywords)
    if score < -SENTIMENT_THRESHOLD:
        return SentimentReading(
            Sentiment.NEGATIVE, score, min(0.95, 0.6 + abs(score) * 0.35), keywords
        )
    return SentimentReading(Sentiment.NEUTRAL, score, 0.7, keywords)


def _clean_list_item(item: str) -> str:
    item = _MARKDOWN.sub("", item).strip()
    return _NAME_DELIMITERS.split(item, maxsplit=1)[0].strip(" .,;*")


def list_items(text: str) -> List[Tuple[Optional[int], str]]:
    """``(number or None, raw line)`` for numbered and bulleted lines, in text order."""
    items = []
    for match in _NUMBERED_LINE.finditer(text):
        items.append((match.start(), int(match.group(1)), match.group(2)))
    for match in _BULLET_LINE.finditer(text):
        items.append((match.start(), None, match.group(1)))
    items.sort(key=lambda item: item[0])
    return [(number, line) for _, number, line in items]


def is_valid_business_name(name: str) -> bool:
    if not 2 <= len(name) <= 80:
        return False
    if not name[0].isupper() and not name[0].isdigit():
        return False
    if not re.search(r"[A-Za-z]", name):
        return False
    if _INVALID_NAME_STARTS.match(name):
        return False
    if name.lower() in _GENERIC_WORDS:
        return False
    # A sentence rather than a name
    if re.search(r"\.\s+[A-Z]", name) or len(name.split()) > 8:
        return False
    return True


def is_common_false_positive(name: str) -> bool:
    lowered = name.lower()
    return any(_word_pattern(fp).search(lowered) for fp in COMMON_FALSE_POSITIVES)


def is_same_business(candidate: str, business_name: str) -> bool:
    candidate_forms = {candidate.lower(), strip_legal_suffix(candidate).lower()}
    target_forms = {business_name.lower()} | {v.lower() for v in name_variations(business_name)}
    if candidate_forms & target_forms:
        return True
    short = acronym(strip_legal_suffix(business_name))
    return len(short) >= 3 and candidate == short


def extract_competitors(text: str, business_name: str) -> List[str]:
    """Other business names appearing as list items, in first-seen order."""
    competitors: List[str] = []
    seen = set()
    for _, line in list_items(text):
        name = _clean_list_item(line)
        if not is_valid_business_name(name):
            continue
        if is_same_business(name, business_name) or detect_mention(name, business_name).mentioned:
            continue
        if is_common_false_positive(name):
            continue
        key = name.lower()
        if key not in seen:
            seen.add(key)
            competitors.append(name)
    return competitors


def extract_rank(text: str, business_name: str) -> Optional[int]:
    """
    1-based list position of the business, or None.

    The numbered line carrying the name wins; otherwise an explicit
    ``#N``/``ranked N``/``Nth place`` phrase in a sentence naming the business.
    """
    position = 0
    for number, line in list_items(text):
        position += 1
        if detect_mention(_MARKDOWN.sub("", line), business_name).mentioned:
            rank = number if number is not None else position
            return rank if 1 <= rank <= MAX_RANK else None

    for sentence in re.split(r"(?<=[.!?])\s+|\n", text):
        if not detect_mention(sentence, business_name).mentioned:
            continue
        for pattern in RANKING_PATTERNS:
            match = pattern.search(sentence)
            if match:
                rank = int(match.group(1))
                if 1 <= rank <= MAX_RANK:
                    return rank
    return None


def competitor_confidence(text: str, competitors: List[str]) -> float:
    confidence = 0.5
    lowered = text.lower()
    if "recommend" in lowered or "top" in lowered or "best" in lowered:
        confidence += 0.2
    if _NUMBERED_LINE.search(text):
        confidence += 0.2
    if len(competitors) > 10:
        confidence -= 0.2
    elif not competitors:
        confidence -= 0.3
    return max(0.1, min(0.95, confidence))


class HeuristicResponseAnalyzer:
    """Keyword and list-structure rules; no second model call."""

    mention_weight = 0.5
    sentiment_weight = 0.3
    competitor_weight = 0.2

    def classify(
        self, text: str, business_name: str, category: PromptCategory
    ) -> ResponseClassification:
        mention = detect_mention(text, business_name)
        sentiment = classify_sentiment(text, mention.mentioned)

        rank = None
        competitors: List[str] = []
        if PromptCategory(category) == PromptCategory.RECOMMENDATION:
            competitors = extract_competitors(text, business_name)
            if mention.mentioned:
                rank = extract_rank(text, business_name)
        comp_conf = competitor_confidence(text, competitors)

        confidence = (
            mention.confidence * self.mention_weight
            + sentiment.confidence * self.sentiment_weight
            + comp_conf * self.competitor_weight
        )
        return ResponseClassification(
            mentioned=mention.mentioned,
            sentiment=sentiment.sentiment,
            confidence=round(min(max(confidence, 0.0), 1.0), 4),
            rank=rank,
            competitors=competitors,
            sentiment_score=sentiment.score,
        )
