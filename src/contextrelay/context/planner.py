"""
Chunk planner: partitions context files into token-bounded parts.
"""

import logging
import re
from typing import List, Optional

from ..models import ContextFile, FileChunk, Part
from .tokens import estimate_tokens

logger = logging.getLogger(__name__)

# Fraction of the per-message budget a part may use. The rest absorbs
# estimation error and the instructions/summary added to part 1.
SAFETY_FACTOR = 0.7
# Fraction of the effective budget a line-split chunk may use.
LINE_SPLIT_FACTOR = 0.8

# Break after \r\n, \n, or a lone \r. str.splitlines would also break on
# form feeds, \x85, \u2028 and friends, which editors keep inside a line.
_LINE_END = re.compile(r"(?<=\r\n)|(?<=\n)|(?<=\r)(?!\n)")


def split_lines(content: str) -> List[str]:
    """Split ``content`` into lines, keeping each line's terminator."""
    return [line for line in _LINE_END.split(content) if line]


class ChunkPlanner:
    """
    Groups files into parts that stay within the effective token budget.

    Files are kept whole where possible and packed in caller order. A file
    that exceeds the effective budget on its own is split by lines, and each
    slice becomes a standalone part.
    """

    def __init__(self, budget: int, ratio: float):
        """
        Initialize the planner.

        Args:
            budget: Maximum tokens the endpoint accepts per request
            ratio: Characters per token used for estimation
        """
        self.budget = budget
        self.ratio = ratio
        self.effective_budget = budget * SAFETY_FACTOR
        self.line_budget = self.effective_budget * LINE_SPLIT_FACTOR

    def plan(self, files: List[ContextFile], prompt_tokens: int) -> Optional[List[Part]]:
        """
        Split ``files`` into ordered parts.

        Args:
            files: Context files in the order they should be delivered
            prompt_tokens: Estimated tokens of the user's prompt

        Returns:
            Ordered list of parts, or None when everything fits in one message
        """
        file_tokens = [estimate_tokens(f.content, self.ratio) for f in files]
        total_tokens = prompt_tokens + sum(file_tokens)

        logger.info(
            "Total estimated tokens: %d (effective limit per message: %d)",
            total_tokens,
            int(self.effective_budget),
        )
        if total_tokens <= self.effective_budget:
            logger.info("Context fits in a single message")
            return None

        parts: List[Part] = []
        current = Part()

        for context_file, tokens in zip(files, file_tokens):
            if current.files and current.estimated_tokens + tokens > self.effective_budget:
                parts.append(current)
                current = Part()

            if tokens > self.effective_budget:
                parts.extend(self._split_file(context_file))
                continue

            current.files.append(
                FileChunk(path=context_file.path, content=context_file.content, tokens=tokens)
            )
            current.estimated_tokens += tokens

        if current.files:
            parts.append(current)

        if not parts:
            # Nothing to split: the prompt alone is over budget.
            logger.info("No file content to split; falling back to a single message")
            return None

        logger.info("Split context into %d parts from %d files", len(parts), len(files))
        return parts

    def _split_file(self, context_file: ContextFile) -> List[Part]:
        """
        Split one oversized file into single-chunk parts by line ranges.

        A line that alone exceeds the line budget is still emitted, as an
        oversized chunk of its own.
        """
        lines = split_lines(context_file.content)
        total_lines = len(lines)
        parts: List[Part] = []
        chunk_lines: List[str] = []
        chunk_tokens = 0
        chunk_start = 1

        def flush(end_line: int) -> None:
            chunk = FileChunk(
                path=context_file.path,
                content="".join(chunk_lines),
                tokens=chunk_tokens,
                partial=True,
                start_line=chunk_start,
                end_line=end_line,
                total_lines=total_lines,
            )
            parts.append(Part(files=[chunk], estimated_tokens=chunk_tokens))

        for line_number, line in enumerate(lines, start=1):
            line_tokens = estimate_tokens(line, self.ratio)
            if chunk_lines and chunk_tokens + line_tokens > self.line_budget:
                flush(line_number - 1)
                chunk_lines = []
                chunk_tokens = 0
                chunk_start = line_number
            chunk_lines.append(line)
            chunk_tokens += line_tokens

        if chunk_lines:
            flush(total_lines)

        logger.info("Split file %s into %d chunks", context_file.path, len(parts))
        return parts


def plan_parts(
    files: List[ContextFile],
    prompt_tokens: int,
    budget: int,
    ratio: float,
) -> Optional[List[Part]]:
    """Convenience wrapper around ChunkPlanner.plan."""
    return ChunkPlanner(budget=budget, ratio=ratio).plan(files, prompt_tokens)
