#!/usr/bin/env python3
"""
Basic chain game example.

This example shows how to:
1. Build a variant and assign heuristic (or LLM) policies
2. Run a game period by period
3. Compare policies and variants on the termination report
"""

import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

from chain_game.engine.game import ChainGame
from chain_game.engine.policies import ConstantPolicy, DemandMatchingPolicy, OrderUpToPolicy, StermanPolicy
from chain_game.models.ollama_client import check_ollama_connection, create_ollama_policies
from chain_game.variants import default_policies, get_variant, list_variants


def run_simple_game():
    """Run the Beer Game with demand-matching policies"""
    print("🎮 Running Beer Game with Demand-Matching Policies")
    print("=" * 50)

    config = get_variant("beer")
    policies = {echelon.name: DemandMatchingPolicy() for echelon in config.echelons}

    game = ChainGame(config, policies)
    print(f"Chain: {' -> '.join(e.label for e in config.echelons)}")
    print()

    while not game.is_complete():
        demand = game.current_demand["units"]
        result = game.advance_period()
        print(f"Period {result.period:2d}: Total Cost = ${result.total_cost:6.2f}, Customer Demand = {demand}")

    results = game.get_results()
    print("\n" + "=" * 50)
    print("🏁 GAME RESULTS")
    print("=" * 50)

    summary = results.summary()
    print(f"Total Cost: ${summary['total_cost']:.2f}")
    print(f"Cost per Period: ${summary['cost_per_period']:.2f}")
    print(f"Bullwhip Ratio: {summary['bullwhip_ratio']:.2f}")
    print(f"Service Level: {summary['service_level']:.1%}")

    print("\nIndividual Costs:")
    for name, cost in results.echelon_costs.items():
        percentage = (cost / results.total_cost) * 100 if results.total_cost else 0.0
        print(f"  {name.title():12}: ${cost:6.2f} ({percentage:4.1f}%)")

    return results


def run_mixed_policies_game():
    """Run the Beer Game with a different policy at every echelon"""
    print("\n🎮 Running Beer Game with Mixed Policies")
    print("=" * 50)

    config = get_variant("beer")
    policies = {
        "retailer": OrderUpToPolicy(target_inventory=15),
        "wholesaler": StermanPolicy(),
        "distributor": DemandMatchingPolicy(backlog_fraction=0.5),
        "manufacturer": ConstantPolicy(6),
    }

    print("Policies:")
    for name, policy in policies.items():
        print(f"  {name.title():12}: {policy.name}")
    print()

    game = ChainGame(config, policies)
    results = game.run()
    summary = results.summary()

    print(f"Final Results: ${summary['total_cost']:.2f} total cost, {summary['bullwhip_ratio']:.2f} bullwhip ratio")
    return results


def run_ollama_game():
    """Run the fast-food variant with Ollama policies"""
    print("\n🤖 Running Fast-Food Game with Ollama Policies")
    print("=" * 50)

    if not check_ollama_connection():
        print("❌ Ollama server not available at http://localhost:11434")
        print("   Make sure Ollama is running: 'ollama serve'")
        return None

    print("✅ Connected to Ollama server")

    config = get_variant("fast_food", max_periods=10)
    policies = create_ollama_policies(config, "llama3.2", temperature=0.1)
    game = ChainGame(config, policies, decision_timeout=60.0)

    while not game.is_complete():
        result = game.advance_period()
        for message in result.messages:
            print(f"  [{message.severity.value}] {message.text}")
        print(f"Period {result.period}: Cost ${result.total_cost:,.2f}")

    results = game.get_results()
    game.close()
    print(f"\n🎉 LLM Game Complete! Degraded decisions: {results.degraded_decisions}")
    return results


def compare_variants():
    """Compare heuristic policies across all variants"""
    print("\n📊 Comparing Policies Across Variants")
    print("=" * 50)

    for variant in list_variants():
        for kind in ("demand", "backlog", "sterman"):
            config = get_variant(variant)
            game = ChainGame(config, default_policies(config, kind))
            summary = game.run().summary()
            print(f"{variant:14} {kind:8}: cost ${summary['total_cost']:>12,.2f}  "
                  f"bullwhip {summary['bullwhip_ratio']:6.2f}  service {summary['service_level']:.1%}")


if __name__ == "__main__":
    run_simple_game()
    run_mixed_policies_game()
    compare_variants()
    run_ollama_game()
