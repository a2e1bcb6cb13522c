"""
Utils Module - Infrastructure Utilities
=======================================

Modules:
    logger: JSON structured logging with rotation and request context
    client_factory: httpx and AsyncOpenAI client construction

Key Components:

Logging (logger.py):
    Structured JSON logging with multiple handlers:
    - Console handler: Human-readable colored output to stderr
    - Streams handler: JSON Lines format to logs/streams.jsonl
    - Error handler: JSON Lines format to logs/errors.jsonl

    Every record is enriched with the active request id and session id.

Client Factory (client_factory.py):
    Streaming-friendly timeouts for the upstream model API.
"""
