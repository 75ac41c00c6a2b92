"""
HTTP Clients Module

Transport and per-provider adapters for upstream football data.

Components:
    - SourceHttpClient: Async aiohttp transport with conditional requests
    - HttpResponse: Decoded response with validators and quota headers
    - SourceAdapter: Base pipeline (dedup, cache, breaker, queue, limiter)
    - RapidAPIFPLAdapter: Provider A, FPL via RapidAPI
    - APIFootballAdapter: Provider B, API-Football v3
"""

from .api_football import APIFootballAdapter
from .base import SourceAdapter, make_resource_key
from .http_client import HttpResponse, SourceHttpClient
from .rapidapi_fpl import RapidAPIFPLAdapter

__all__ = [
    "SourceHttpClient",
    "HttpResponse",
    "SourceAdapter",
    "RapidAPIFPLAdapter",
    "APIFootballAdapter",
    "make_resource_key",
]
