"""
Customer-style prompt generation for fingerprint runs.

Each category has a small set of templates; one is chosen per business by a
stable hash of the business id so repeated runs ask the same questions and
scores stay comparable across history.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Dict, List, Optional

from cfp.core.models import Business, CrawledData, Location, PromptCategory

FACTUAL_TEMPLATES = [
    "What information do you have about {business_name}{location_context}? Please provide "
    "factual details about their services, reputation, contact information, and any notable "
    "characteristics.",
    "Can you tell me about {business_name}{location_context}? I'm looking for factual "
    "information about what they do, their background, and their reputation in the community.",
    "I need information about {business_name}{location_context}. What can you tell me about "
    "their services, experience, and standing in the {industry} industry?",
]

OPINION_TEMPLATES = [
    "I'm considering using the services of {business_name}{location_context}. Based on what you "
    "know, would you say they are a reputable and reliable {business_type}? What's your "
    "assessment of their quality and trustworthiness?",
    "I'm thinking about going to {business_name}{location_context} for {service_context}. Do you "
    "think they're a good choice? What's your opinion on their reputation and service quality?",
    "A friend recommended {business_name}{location_context} to me. What's your take on them? Are "
    "they known for being professional and delivering good results in the {industry} space?",
]

RECOMMENDATION_TEMPLATES = [
    "What are the best {industry_plural}{location_context}? I'm looking for top recommendations "
    "for quality {service_type} providers in the area. Please answer with a numbered list.",
    "Can you recommend the top 5 {industry_plural}{location_context}? I need reliable options "
    "for {service_context} and want to know who the leading providers are. Please answer with a "
    "numbered list.",
    "I'm looking for the most reputable {industry_plural}{location_context}. Who would you "
    "recommend for someone seeking high-quality {service_type} services? Please answer with a "
    "numbered list.",
]

TEMPLATES: Dict[PromptCategory, List[str]] = {
    PromptCategory.FACTUAL: FACTUAL_TEMPLATES,
    PromptCategory.OPINION: OPINION_TEMPLATES,
    PromptCategory.RECOMMENDATION: RECOMMENDATION_TEMPLATES,
}

CATEGORY_TEMPERATURES = {
    PromptCategory.FACTUAL: 0.3,
    PromptCategory.OPINION: 0.5,
    PromptCategory.RECOMMENDATION: 0.7,
}

# industry -> (plural, service, type)
INDUSTRY_MAPPINGS = {
    "healthcare": ("healthcare providers", "medical care", "healthcare provider"),
    "dental": ("dental practices", "dental care", "dental practice"),
    "medical": ("medical practices", "medical services", "medical provider"),
    "veterinary": ("veterinary clinics", "pet care", "veterinary clinic"),
    "legal": ("law firms", "legal services", "law firm"),
    "accounting": ("accounting firms", "financial services", "accounting firm"),
    "consulting": ("consulting firms", "business consulting", "consulting company"),
    "real estate": ("real estate agencies", "property services", "real estate agency"),
    "restaurant": ("restaurants", "dining", "restaurant"),
    "cafe": ("cafes", "coffee and food", "cafe"),
    "catering": ("catering companies", "event catering", "catering service"),
    "hotel": ("hotels", "accommodation", "hotel"),
    "retail": ("retail stores", "shopping", "retail business"),
    "automotive": ("auto services", "vehicle maintenance", "automotive service"),
    "beauty": ("beauty salons", "beauty services", "beauty salon"),
    "fitness": ("fitness centers", "fitness training", "fitness facility"),
    "technology": ("tech companies", "technology solutions", "technology company"),
    "marketing": ("marketing agencies", "marketing services", "marketing agency"),
    "construction": ("construction companies", "construction services", "construction company"),
    "cleaning": ("cleaning services", "cleaning", "cleaning service"),
}
DEFAULT_INDUSTRY = ("businesses", "professional services", "business")

_FUZZY_INDUSTRY = [
    (("food", "dining"), "restaurant"),
    (("health", "doctor", "clinic"), "healthcare"),
    (("law", "attorney", "lawyer"), "legal"),
    (("tech", "software"), "technology"),
    (("shop", "store"), "retail"),
]

_SERVICE_KEYWORDS = (
    "consulting",
    "design",
    "development",
    "marketing",
    "sales",
    "repair",
    "maintenance",
    "installation",
    "training",
    "support",
    "care",
    "treatment",
    "therapy",
    "advice",
    "planning",
)


@dataclass(frozen=True)
class PromptSpec:
    """One cell of the prompt matrix before it is paired with a model."""

    category: PromptCategory
    text: str
    temperature: float


def _match_industry(text: str, fuzzy: bool = True) -> Optional[str]:
    text = text.lower()
    for industry in INDUSTRY_MAPPINGS:
        if industry in text:
            return industry
    if fuzzy:
        for keywords, industry in _FUZZY_INDUSTRY:
            if any(keyword in text for keyword in keywords):
                return industry
    return None


def extract_industry(business: Business, crawled: Optional[CrawledData] = None) -> Optional[str]:
    """Best-effort industry keyword from category, crawled text, then URL."""
    if crawled is not None:
        if crawled.category:
            found = _match_industry(crawled.category)
            if found:
                return found
        text = " ".join(
            filter(None, [crawled.description, crawled.industry, *crawled.services])
        )
        if text:
            found = _match_industry(text)
            if found:
                return found
    return _match_industry(business.url, fuzzy=False)


def location_context(location: Optional[Location]) -> str:
    if location is None or not location.display():
        return ""
    return f" in {location.display()}"


def service_context(crawled: Optional[CrawledData], default_service: str) -> str:
    if crawled is None:
        return default_service
    if crawled.services:
        return crawled.services[0].lower()
    description = (crawled.description or "").lower()
    for keyword in _SERVICE_KEYWORDS:
        if keyword in description:
            return keyword
    return default_service


def template_index(business_id: str, category: PromptCategory, count: int) -> int:
    digest = hashlib.sha256(f"{business_id}:{PromptCategory(category).value}".encode()).digest()
    return digest[0] % count


class PromptGenerator:
    """Builds the per-category prompts for a business."""

    def variables(self, business: Business, crawled: Optional[CrawledData] = None) -> Dict[str, str]:
        industry = extract_industry(business, crawled)
        plural, service, business_type = INDUSTRY_MAPPINGS.get(industry or "", DEFAULT_INDUSTRY)
        location = business.location
        if crawled is not None and crawled.location is not None and not location.display():
            location = crawled.location
        return {
            "business_name": business.name,
            "location_context": location_context(location),
            "industry": industry or "local business",
            "industry_plural": plural,
            "business_type": business_type,
            "service_type": service,
            "service_context": service_context(crawled, service),
        }

    def generate(
        self, business: Business, crawled: Optional[CrawledData] = None
    ) -> List[PromptSpec]:
        """One prompt per category, in factual/opinion/recommendation order."""
        values = self.variables(business, crawled)
        prompts = []
        for category, templates in TEMPLATES.items():
            template = templates[template_index(business.id, category, len(templates))]
            prompts.append(
                PromptSpec(
                    category=category,
                    text=template.format(**values),
                    temperature=CATEGORY_TEMPERATURES[category],
                )
            )
        return prompts
