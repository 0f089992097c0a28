"""
Knowledge graph publishing.

QID resolution, notability gating, entity construction and the Wikidata
publish client.
"""

from .entity_builder import EntityBuilder
from .notability import NotabilityGate
from .publisher import WikidataPublisher
from .qid_cache import QidResolutionCache

__all__ = ["EntityBuilder", "NotabilityGate", "QidResolutionCache", "WikidataPublisher"]
