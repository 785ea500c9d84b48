"""
Context sizing and splitting.

Estimates token usage, chooses a delivery strategy, and partitions files into
parts that fit the per-message budget.
"""

from .messages import (
    build_final_message,
    build_part_message,
    build_single_message,
    extract_code_blocks,
)
from .planner import ChunkPlanner, plan_parts
from .summary import create_context_summary
from .tokens import (
    ContextEstimate,
    estimate_context,
    estimate_tokens,
    select_strategy,
    total_context_tokens,
)

__all__ = [
    "ChunkPlanner",
    "ContextEstimate",
    "build_final_message",
    "build_part_message",
    "build_single_message",
    "create_context_summary",
    "estimate_context",
    "estimate_tokens",
    "extract_code_blocks",
    "plan_parts",
    "select_strategy",
    "total_context_tokens",
]
