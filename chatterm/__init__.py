"""chatterm: a terminal chat client for LLM endpoints."""

__version__ = "0.3.0"
