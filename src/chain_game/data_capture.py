"""
Data capture for chain game runs.

Flattens the history ledger into pandas DataFrames (one row per period,
echelon and resource kind) for export and analysis.
"""

import datetime
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import pandas as pd

from .engine.game import ChainGame, HistoryEntry, TerminationReport

HISTORY_COLUMNS = [
    "period",
    "echelon",
    "role",
    "resource",
    "inventory",
    "backlog",
    "incoming_order",
    "arriving_supply",
    "order_placed",
    "quantity_shipped",
    "cost",
    "degraded",
    "rationale",
]


@dataclass
class RunMetadata:
    """Metadata for a single game run"""
    run_id: str
    variant: str
    policy: str
    run_number: int
    seed: int
    periods: int
    timestamp: str
    total_cost: float
    service_level: float
    bullwhip_ratio: float

    @classmethod
    def from_report(
        cls,
        report: TerminationReport,
        variant: str,
        policy: str,
        run_number: int = 1,
        seed: int = 0,
    ) -> "RunMetadata":
        return cls(
            run_id=str(uuid.uuid4()),
            variant=variant,
            policy=policy,
            run_number=run_number,
            seed=seed,
            periods=report.periods_played,
            timestamp=datetime.datetime.now().isoformat(),
            total_cost=report.total_cost,
            service_level=report.service_level,
            bullwhip_ratio=report.bullwhip_ratio,
        )


def _kinds(entry: HistoryEntry) -> List[str]:
    kinds: List[str] = []
    for field in (entry.inventory, entry.backlog, entry.incoming_order, entry.order_placed, entry.quantity_shipped):
        for kind in field:
            if kind not in kinds:
                kinds.append(kind)
    return kinds


def history_frame(history: Iterable[HistoryEntry]) -> pd.DataFrame:
    """
    One row per (period, echelon, resource kind).

    The echelon's period cost is attached to its first row only so that
    summing the ``cost`` column gives the game's total cost.
    """
    rows: List[Dict[str, Any]] = []
    for entry in history:
        for i, kind in enumerate(_kinds(entry)):
            rows.append({
                "period": entry.period,
                "echelon": entry.echelon,
                "role": entry.role,
                "resource": kind,
                "inventory": entry.inventory.get(kind, 0),
                "backlog": entry.backlog.get(kind, 0),
                "incoming_order": entry.incoming_order.get(kind, 0),
                "arriving_supply": entry.arriving_supply.get(kind, 0),
                "order_placed": entry.order_placed.get(kind, 0),
                "quantity_shipped": entry.quantity_shipped.get(kind, 0),
                "cost": entry.cost if i == 0 else 0.0,
                "degraded": entry.degraded,
                "rationale": entry.rationale.get(kind, ""),
            })
    return pd.DataFrame(rows, columns=HISTORY_COLUMNS)


def period_summary(history: Iterable[HistoryEntry]) -> pd.DataFrame:
    """System totals per period: inventory, backlog and cost across all echelons"""
    frame = history_frame(history)
    if frame.empty:
        return pd.DataFrame(columns=["period", "inventory", "backlog", "cost", "cumulative_cost"])
    summary = frame.groupby("period", as_index=False)[["inventory", "backlog", "cost"]].sum()
    summary["cumulative_cost"] = summary["cost"].cumsum()
    return summary


def report_frame(report: TerminationReport) -> pd.DataFrame:
    """Per-echelon cost table with the run-level metrics repeated on each row"""
    rows = [
        {
            "echelon": name,
            "cost": cost,
            "total_cost": report.total_cost,
            "average_backlog": report.average_backlog,
            "average_inventory": report.average_inventory,
            "bullwhip_ratio": report.bullwhip_ratio,
            "service_level": report.service_level,
        }
        for name, cost in report.echelon_costs.items()
    ]
    return pd.DataFrame(rows)


def export_run(
    game: ChainGame,
    path: Union[str, Path],
    metadata: Optional[RunMetadata] = None,
) -> Path:
    """
    Write a game's history to CSV.

    When ``metadata`` is given its fields are added as constant columns so
    exports of several runs can be concatenated and grouped.
    """
    path = Path(path)
    frame = history_frame(game.history)
    if metadata is not None:
        for key, value in asdict(metadata).items():
            frame[key] = value
    path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(path, index=False)
    return path
