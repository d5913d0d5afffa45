"""Metabase REST API client."""

from .client import MetabaseClient, code_for_status

__all__ = ["MetabaseClient", "code_for_status"]
