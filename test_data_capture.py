"""
Tests for history export to pandas / CSV.
"""

import pandas as pd
import pytest

from chain_game.data_capture import RunMetadata, export_run, history_frame, period_summary, report_frame
from chain_game.engine.game import ChainGame
from chain_game.variants import default_policies, get_variant


@pytest.fixture
def beer_game():
    config = get_variant("beer", max_periods=3)
    game = ChainGame(config, default_policies(config, "backlog"))
    game.run()
    return game


def test_history_frame_one_row_per_echelon_and_kind(beer_game):
    frame = history_frame(beer_game.history)

    assert len(frame) == 3 * 4
    assert list(frame["period"].unique()) == [1, 2, 3]
    assert frame["cost"].sum() == pytest.approx(beer_game.total_cost)


def test_history_frame_multi_kind_echelons():
    config = get_variant("fast_food", max_periods=1)
    game = ChainGame(config, default_policies(config))
    game.run()
    frame = history_frame(game.history)

    counts = frame.groupby("echelon").size().to_dict()
    assert counts == {"dc": 3, "bakery": 1, "protein": 3}
    assert frame["cost"].sum() == pytest.approx(game.total_cost)


def test_empty_history():
    assert history_frame([]).empty
    assert period_summary([]).empty


def test_period_summary_accumulates_cost(beer_game):
    summary = period_summary(beer_game.history)
    assert list(summary["period"]) == [1, 2, 3]
    assert summary["cumulative_cost"].iloc[-1] == pytest.approx(beer_game.total_cost)


def test_report_frame(beer_game):
    report = beer_game.get_results()
    frame = report_frame(report)
    assert list(frame["echelon"]) == ["retailer", "wholesaler", "distributor", "manufacturer"]
    assert frame["cost"].sum() == pytest.approx(report.total_cost)


def test_export_run_with_metadata(beer_game, tmp_path):
    report = beer_game.get_results()
    metadata = RunMetadata.from_report(report, "beer", "backlog", run_number=2, seed=99)
    path = export_run(beer_game, tmp_path / "runs" / "beer.csv", metadata)

    frame = pd.read_csv(path)
    assert len(frame) == 12
    assert set(frame["variant"]) == {"beer"}
    assert set(frame["run_number"]) == {2}
    assert set(frame["seed"]) == {99}
