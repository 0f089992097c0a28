"""
LLM visibility fingerprinting.

Generates prompts for a business, queries several models concurrently and
scores how visible the business is in the answers.
"""

from .analyzer import HeuristicResponseAnalyzer
from .engine import FingerprintEngine
from .prompts import PromptGenerator

__all__ = ["FingerprintEngine", "HeuristicResponseAnalyzer", "PromptGenerator"]
