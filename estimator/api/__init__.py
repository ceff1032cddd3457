"""
REST API module for the estimator.

Provides FastAPI endpoints for:
- Estimate generation and follow-up prompts (buffered and NDJSON streamed)
- Streaming connection management
- Project and line item reads
"""
