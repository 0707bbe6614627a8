"""Handles all user-facing configuration values."""

import json
import os

from chatterm.globals import CONFIG_FILE

DEFAULT_INITIAL_PROMPT = (
    "You are Assistant, a very enthusiastic chatbot. You are chatting with a user. "
    'If you don\'t know the answer to something, say "I don\'t know".'
)


class Config:
    """User-facing configuration variables"""

    def __init__(self):
        # Default values
        self.model: str = "gpt-4o-mini"
        self.endpoint: str = "https://api.openai.com/v1"
        self.initial_prompt: str = DEFAULT_INITIAL_PROMPT
        self.max_tokens: int = 2000
        self.refresh_rate: int = 30
        self.request_timeout: float = 60.0
        self.first_chunk_timeout: float = 60.0
        self.idle_timeout: float = 30.0
        self.scroll_step: int = 3

    def save(self):
        """Saves any config changes to the config file."""
        os.makedirs(os.path.dirname(CONFIG_FILE), exist_ok=True)
        with open(CONFIG_FILE, "w", encoding="utf-8") as f:
            json.dump(self.__dict__, f, indent=2)

    def load(self):
        """Loads the config file, creating it on first run."""
        if not os.path.exists(CONFIG_FILE):
            self.save()
        with open(CONFIG_FILE, "r", encoding="utf-8") as f:
            data = json.load(f)
        for key, val in data.items():
            setattr(self, key, val)

    @property
    def tick_interval(self) -> float:
        """Seconds between redraws while a response is streaming"""
        return 1 / max(1, self.refresh_rate)
