"""Chain game simulation components"""

from .pipeline import Flow, PipelineEntry, PipelineLedger, QueueKey
from .echelon import Echelon, Settlement, allocate_pooled, assemble, fulfil
from .demand import DemandGenerator, convert, step_schedule
from .policies import (
    BacklogChasingPolicy,
    ConstantPolicy,
    DecisionPolicy,
    DemandMatchingPolicy,
    HumanPolicy,
    ObservableState,
    OrderUpToPolicy,
    PolicyDecision,
    ResilientPolicy,
    StermanPolicy,
    create_policy,
    parse_order_input,
    sanitize_order,
)
from .game import (
    ChainGame,
    ChainSnapshot,
    GameMessage,
    GamePhase,
    HistoryEntry,
    PeriodResult,
    Severity,
    TerminationReport,
)

__all__ = [
    "Flow",
    "PipelineEntry",
    "PipelineLedger",
    "QueueKey",
    "Echelon",
    "Settlement",
    "allocate_pooled",
    "assemble",
    "fulfil",
    "DemandGenerator",
    "convert",
    "step_schedule",
    "BacklogChasingPolicy",
    "ConstantPolicy",
    "DecisionPolicy",
    "DemandMatchingPolicy",
    "HumanPolicy",
    "ObservableState",
    "OrderUpToPolicy",
    "PolicyDecision",
    "ResilientPolicy",
    "StermanPolicy",
    "create_policy",
    "parse_order_input",
    "sanitize_order",
    "ChainGame",
    "ChainSnapshot",
    "GameMessage",
    "GamePhase",
    "HistoryEntry",
    "PeriodResult",
    "Severity",
    "TerminationReport",
]
