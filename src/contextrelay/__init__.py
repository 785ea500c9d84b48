"""Token-budget-aware context splitting and multi-part delivery to chat completion endpoints."""

__version__ = "0.1.0"
