"""OpenAI client configuration for assignment ranking and chat replies."""

import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from openai import OpenAI

load_dotenv()

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4.1-mini")


@lru_cache(maxsize=1)
def get_openai_client() -> Optional[OpenAI]:
    """Return a shared OpenAI client, or None when no API key is configured."""
    if not OPENAI_API_KEY:
        return None
    return OpenAI(api_key=OPENAI_API_KEY)


def is_openai_configured() -> bool:
    return bool(OPENAI_API_KEY)


__all__ = ["get_openai_client", "is_openai_configured", "OPENAI_MODEL"]
