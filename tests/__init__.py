"""
Tests Package

Unit and integration tests for the FPL data gateway.

Structure:
    - Unit tests: Resilience components, transport and normalization in isolation
    - Integration tests: Adapters and the coordinator over a fake transport
    - fixtures/: Sample provider payloads
"""

__all__ = []
