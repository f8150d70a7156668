"""
Model integrations for chain game.

This module provides decision policies backed by LLM hosting services.
"""

from .ollama_client import OllamaPolicy, RemoteDecision, check_ollama_connection, create_ollama_policies

__all__ = [
    "OllamaPolicy",
    "RemoteDecision",
    "check_ollama_connection",
    "create_ollama_policies",
]
