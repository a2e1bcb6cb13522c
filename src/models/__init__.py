"""
Models Module - Data Models and Type Definitions
=================================================

Pydantic v2 models for chunks, wire messages and error responses.

Modules:
    chunk_models: StreamChunk tagged union produced by upstream agent clients
    event_models: Server and client wire messages shared by SSE and WebSocket
    error_models: Error codes and REST/WebSocket error payloads

Key Components:

Chunk Models (chunk_models.py):
    - StreamChunk: text, tool_use, tool_result, usage, done, error
    - ToolCall, ToolResult, TokenUsage payloads

Event Models (event_models.py):
    - Server messages: text_delta, tool_call, tool_result, message_complete, error
    - Client messages: message, cancel, session (discriminated on ``type``)
    - ChatRequest: SSE request body

Error Models (error_models.py):
    - ErrorCode enum with HTTP status mapping
    - ErrorResponse for REST, WebSocketError for WebSocket frames
"""
