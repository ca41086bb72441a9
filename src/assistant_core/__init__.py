"""Assistant core: conversational session engine with a text-embedded edit protocol."""

__version__ = "0.3.0"
