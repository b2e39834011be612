"""
Core Business Logic
==================

Modules:
- agent: Agent inference API client and prompt variables
- storage: Append-only conversation records
"""
