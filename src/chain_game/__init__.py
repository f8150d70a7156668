"""
Chain Game: multi-echelon supply chain simulation.

One discrete-time engine for Beer Game style ordering games: a chain of
echelons passes orders upstream and shipments downstream under fixed lead
times, with human, heuristic or LLM-driven decision policies.
"""

__version__ = "0.1.0"
__author__ = "Chain Game Contributors"

from .config import ChainConfig, DemandConfig, EchelonConfig, LeadTimes, build_config, load_config
from .engine.game import ChainGame, GamePhase, HistoryEntry, Severity, TerminationReport
from .engine.policies import (
    BacklogChasingPolicy,
    DecisionPolicy,
    HumanPolicy,
    ObservableState,
    PolicyDecision,
    ResilientPolicy,
    create_policy,
)
from .exceptions import ChainGameError, ConfigurationError, InvalidOrderError, MissingDecisionError
from .models.ollama_client import OllamaPolicy, check_ollama_connection, create_ollama_policies
from .variants import default_policies, get_variant, list_variants

__all__ = [
    "ChainConfig",
    "DemandConfig",
    "EchelonConfig",
    "LeadTimes",
    "build_config",
    "load_config",
    "ChainGame",
    "GamePhase",
    "HistoryEntry",
    "Severity",
    "TerminationReport",
    "BacklogChasingPolicy",
    "DecisionPolicy",
    "HumanPolicy",
    "ObservableState",
    "PolicyDecision",
    "ResilientPolicy",
    "create_policy",
    "ChainGameError",
    "ConfigurationError",
    "InvalidOrderError",
    "MissingDecisionError",
    "OllamaPolicy",
    "check_ollama_connection",
    "create_ollama_policies",
    "default_policies",
    "get_variant",
    "list_variants",
]
