"""Local Chat, a terminal client for a locally hosted Ollama server."""

__version__ = "0.3.0"
