"""
Deterministic seeding for chain game runs.

Identical run conditions (variant, policy, run number) always get the same
demand seed, while different conditions and different runs get different
ones, so repeated runs are reproducible and still independent.
"""

import hashlib
from typing import Any, Dict, Tuple

DEFAULT_BASE_SEED = 42


def deterministic_seed(variant: str, policy: str, run: int, base_seed: int = DEFAULT_BASE_SEED) -> int:
    """
    Generate a deterministic seed from run conditions.

    Args:
        variant: Game variant name (e.g., "fast_food")
        policy: Policy name (e.g., "sterman" or "ollama:llama3.2")
        run: Run number (1, 2, 3, ...)
        base_seed: Base seed for hash mixing

    Returns:
        31-bit positive seed
    """
    condition_str = f"{variant}|{policy}|{run}|{base_seed}"
    hash_obj = hashlib.md5(condition_str.encode())
    return int(hash_obj.hexdigest()[:8], 16) & 0x7FFFFFFF


class RunSeeder:
    """Caches seeds per run condition and reports on what it handed out"""

    def __init__(self, base_seed: int = DEFAULT_BASE_SEED, deterministic: bool = True):
        self.base_seed = base_seed
        self.deterministic = deterministic
        self._seed_cache: Dict[Tuple[str, str, int], int] = {}

    def get_seed(self, variant: str, policy: str, run: int) -> int:
        """Get seed for a run condition with caching."""
        if not self.deterministic:
            return self.base_seed

        key = (variant, policy, run)
        if key not in self._seed_cache:
            self._seed_cache[key] = deterministic_seed(variant, policy, run, self.base_seed)
        return self._seed_cache[key]

    def get_seed_statistics(self) -> Dict[str, Any]:
        """Get statistics about generated seeds."""
        if not self._seed_cache:
            return {"message": "No seeds generated yet"}

        seeds = list(self._seed_cache.values())
        return {
            "total_seeds": len(seeds),
            "unique_seeds": len(set(seeds)),
            "collision_rate": 1 - (len(set(seeds)) / len(seeds)),
            "min_seed": min(seeds),
            "max_seed": max(seeds),
            "deterministic": self.deterministic,
            "base_seed": self.base_seed,
        }
