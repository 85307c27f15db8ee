"""Seedable random source shared by gateways and services."""

from __future__ import annotations

import random
from typing import Optional


def build_random_source(seed: Optional[int] = None) -> random.Random:
    """Return an isolated generator; ``None`` seeds from system entropy."""
    return random.Random(seed)
