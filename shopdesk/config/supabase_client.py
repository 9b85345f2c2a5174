"""Supabase client configuration and helpers."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from supabase import Client, create_client

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY")
PROOF_PHOTO_BUCKET = os.getenv("PROOF_PHOTO_BUCKET", "delivery-proofs")


@lru_cache(maxsize=1)
def get_supabase_client() -> Optional[Client]:
    """Instantiate the Supabase client if credentials are configured."""
    api_key = SUPABASE_SERVICE_ROLE_KEY or SUPABASE_ANON_KEY
    if not SUPABASE_URL or not api_key:
        return None
    return create_client(SUPABASE_URL, api_key)


__all__ = [
    "get_supabase_client",
    "PROOF_PHOTO_BUCKET",
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
    "SUPABASE_SERVICE_ROLE_KEY",
]
