"""
Integrations Module - Upstream Agent Clients
============================================

Adapters that turn a language-model API into the chunk stream consumed by the
session streaming core.

Modules:
    agent_client: ``AgentClient`` protocol, ``AgentRequest``, the OpenAI
        chat-completions adapter and the local echo client

Example:
    Plugging a client into the registry::

        from integrations.agent_client import OpenAIAgentClient
        from utils.client_factory import create_openai_client

        client = OpenAIAgentClient(create_openai_client(api_key), model="gpt-4o-mini")
        registry = SessionRegistry(client)

See Also:
    :mod:`core.session`: Registry, generation controller and broadcast hub
"""
