"""CFP pipeline: crawl a business, fingerprint its LLM visibility, publish it to Wikidata."""

__version__ = "0.1.0"
