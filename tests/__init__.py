"""
Test Suite
==========

Test Categories:
- unit: Unit tests for individual components
- integration: HTTP and SSE tests through the FastAPI application
"""
