"""
Serving — FastAPI application for the assistant.

This module exposes the assistant over HTTP so it can run as a standalone
service (``uvicorn orchestrated_rag.serving.app:create_app --factory``).
"""
