"""Turn a source tree into one bounded, LLM-ready digest."""

__version__ = "0.1.0"
