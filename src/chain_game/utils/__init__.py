"""Utility helpers for chain game"""

from .seeding import DEFAULT_BASE_SEED, RunSeeder, deterministic_seed

__all__ = ["DEFAULT_BASE_SEED", "RunSeeder", "deterministic_seed"]
