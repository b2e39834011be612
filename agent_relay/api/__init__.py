"""
FastAPI REST Endpoints
======================

HTTP and SSE endpoints of the relay.

Endpoints:
- POST /chat/stream: Tutor reply piped as an event stream
- POST /chat: Tutor reply in one response
- POST /chat/start-search: Start a detached sourcing search
- GET /chat/session/{session_id}: Recorded conversation
- GET /stream/{session_id}: Subscribe to a detached session
- GET /stream/stats: Live topics and subscribers
- GET /health: Health check endpoint
"""
