"""
Data Models
===========

Pydantic data models for request/response validation and internal data structures.

Models:
- schemas: conversation records, chat API schemas and agent API payloads
"""
