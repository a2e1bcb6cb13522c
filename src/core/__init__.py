"""
Core Application Layer - Session Streaming and Configuration
============================================================

Modules:
    constants: Wire vocabulary, defaults, and Pydantic settings validation
    session: Session registry, generation controller, broadcast hub, protocol
        encoder and idle reaper

Key Components:

Session Streaming (session/):
    Owns live agent sessions. Each session runs at most one generation at a
    time and fans its chunk stream out to every attached subscriber, whether
    it is an SSE response or a WebSocket connection.

Configuration (constants.py):
    Centralized configuration using Pydantic Settings for validation:
    - OpenAI credentials and model
    - Idle timeout, reaper interval, subscriber queue bounds
    - WebSocket heartbeat and rate limits

See Also:
    :mod:`api.routes`: SSE and WebSocket transports
    :mod:`integrations.agent_client`: Upstream agent clients
"""
