"""
Token estimation and delivery strategy selection.

Estimates are character based on purpose: they only need to be conservative,
and the planner applies its own safety margins on top.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, List, Tuple

from ..models import ContextFile, Strategy
from ..settings import Settings

logger = logging.getLogger(__name__)

CODE_MARKERS = ("```", "function", "class")
CODE_MARGIN = 1.1


def estimate_tokens(text: str, ratio: float) -> int:
    """
    Approximate the token count of ``text``.

    Args:
        text: Text to estimate
        ratio: Characters per token

    Returns:
        ceil(len(text) / ratio), widened by 10% when the text looks like code
    """
    if not text:
        return 0
    estimate = math.ceil(len(text) / ratio)
    if any(marker in text for marker in CODE_MARKERS):
        estimate = math.ceil(estimate * CODE_MARGIN)
    return estimate


def total_context_tokens(prompt: str, files: Iterable[ContextFile], ratio: float) -> int:
    """Prompt estimate plus the sum of per-file estimates."""
    total = estimate_tokens(prompt, ratio)
    for context_file in files:
        total += estimate_tokens(context_file.content, ratio)
    return total


def select_strategy(mode: Strategy | str, total_estimated_tokens: int, budget: int) -> Strategy:
    """Resolve ``auto`` against the budget; explicit modes pass through."""
    mode = Strategy(mode)
    if mode is not Strategy.AUTO:
        return mode
    if total_estimated_tokens > budget:
        return Strategy.STREAMING
    return Strategy.SINGLE


@dataclass
class ContextEstimate:
    """Size report for a set of context files."""

    files: List[Tuple[str, int]] = field(default_factory=list)
    total_tokens: int = 0
    max_tokens_per_message: int = 0
    strategy: Strategy = Strategy.SINGLE
    parts_needed: int = 1

    def render(self) -> str:
        lines = ["=== Context Estimation ===", "", "Files:"]
        for path, tokens in self.files:
            lines.append(f"  {path}: ~{tokens} tokens")
        lines.append("")
        lines.append(f"Total estimated tokens: ~{self.total_tokens}")
        lines.append(f"Max tokens per message: {self.max_tokens_per_message}")
        lines.append(f"Strategy: {self.strategy.value}")
        if self.strategy is Strategy.STREAMING:
            lines.append(f"Will send in ~{self.parts_needed} parts")
        else:
            lines.append("Will send in single message")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "files": [{"path": path, "tokens": tokens} for path, tokens in self.files],
            "total_tokens": self.total_tokens,
            "max_tokens_per_message": self.max_tokens_per_message,
            "strategy": self.strategy.value,
            "parts_needed": self.parts_needed,
        }


def estimate_context(files: List[ContextFile], settings: Settings) -> ContextEstimate:
    """Build a ContextEstimate for ``files`` using the configured budget and strategy."""
    ratio = settings.token_estimation_ratio
    budget = settings.max_tokens_per_message

    report = ContextEstimate(max_tokens_per_message=budget)
    for context_file in files:
        tokens = estimate_tokens(context_file.content, ratio)
        report.files.append((context_file.path, tokens))
        report.total_tokens += tokens

    report.strategy = select_strategy(settings.strategy, report.total_tokens, budget)
    report.parts_needed = max(1, math.ceil(report.total_tokens / budget))
    logger.debug(
        "Estimated %d tokens across %d files (strategy=%s)",
        report.total_tokens,
        len(files),
        report.strategy.value,
    )
    return report
