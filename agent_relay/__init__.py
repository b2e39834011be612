"""
Agent Relay
===========

A streaming relay between browsers and an external agent inference API.

This package provides:
- FastAPI endpoints that stream agent replies over Server-Sent Events
- Piped delivery for single-viewer tutor chat
- Detached delivery through an in-process topic registry for sourcing searches
- Append-only conversation records in memory or Redis
"""

__version__ = "1.0.0"
__author__ = "Agent Relay Team"
