"""
Error taxonomy for the chain game engine.

Configuration and input errors derive from ValueError so callers that
already guard engine calls with ``except ValueError`` keep working.
"""


class ChainGameError(Exception):
    """Base class for all engine errors"""


class ConfigurationError(ChainGameError, ValueError):
    """Invalid simulation configuration; the game refuses to start"""


class InvalidOrderError(ChainGameError, ValueError):
    """Order quantity rejected at the input boundary"""


class MissingDecisionError(ChainGameError, ValueError):
    """A manually controlled echelon has no order for the current period"""


class LedgerError(ChainGameError, ValueError):
    """Pipeline ledger misuse (negative quantity, scheduling into a settled period)"""


class GameCompleteError(ChainGameError, ValueError):
    """The horizon has been reached; no further periods can be played"""


class PolicyError(ChainGameError):
    """
    A decision policy could not produce a decision.

    Raised only inside policy providers and always recovered by a fallback
    before it reaches the orchestrator.
    """
