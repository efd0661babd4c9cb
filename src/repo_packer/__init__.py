"""Clone a public repository and pack it into a single LLM-ready document."""

__version__ = "0.1.0"
