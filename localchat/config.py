"""Handles all user-facing configuration actions."""

import json
import os

from localchat.globals import CONFIG_FILE


class Config:
    """User-facing configuration variables"""

    def __init__(self):
        # Default values
        self.endpoint: str = "http://localhost:11434"
        self.model: str = "deepseek-r1"
        self.request_timeout: float = 300
        self.context_length: int = 131072
        self.refresh_rate: int = 30
        self.rich_code_theme: str = "monokai"
        self.log_level: str = "ERROR"

    def save(self):
        """Saves any config changes to the config file."""
        with open(CONFIG_FILE, "w", encoding="utf-8") as f:
            json.dump(self.__dict__, f, indent=2)

    def load(self):
        """Loads the config file."""
        if not os.path.exists(CONFIG_FILE):
            self.save()
        with open(CONFIG_FILE, "r", encoding="utf-8") as f:
            data = json.load(f)
        for key, val in data.items():
            setattr(self, key, val)
        # Same floor as the !rate command
        try:
            self.refresh_rate = max(4, int(self.refresh_rate))
        except (TypeError, ValueError):
            self.refresh_rate = 30

    @property
    def chat_url(self) -> str:
        """Streaming chat endpoint"""
        return f"{self.endpoint.rstrip('/')}/api/chat"

    @property
    def generate_url(self) -> str:
        """Legacy single-shot endpoint"""
        return f"{self.endpoint.rstrip('/')}/api/generate"

    @property
    def tags_url(self) -> str:
        return f"{self.endpoint.rstrip('/')}/api/tags"
