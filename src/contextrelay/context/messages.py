"""Message text sent to the endpoint during single and multi-part delivery."""

import re
from typing import List, Optional

from ..models import CodeBlock, ContextFile, FileChunk, Part
from .summary import file_extension

MULTIPART_INSTRUCTIONS = (
    "I'll provide you with code context in multiple parts.\n"
    "Please read each part and simply respond 'Acknowledged' after each one.\n"
    "After all parts are sent, I'll ask my actual question."
)

_CODE_BLOCK_RE = re.compile(r"```(\w*)\n(.*?)\n```", re.DOTALL)


def _chunk_header(chunk: FileChunk) -> str:
    if chunk.partial:
        return f"File: {chunk.path} (lines {chunk.start_line}-{chunk.end_line} of {chunk.total_lines})"
    return f"File: {chunk.path}"


def build_part_message(
    part: Part,
    part_number: int,
    total_parts: int,
    context_summary: Optional[str] = None,
) -> str:
    """Render part ``part_number`` (1-based) of ``total_parts``."""
    lines: List[str] = []

    if part_number == 1:
        lines.append(MULTIPART_INSTRUCTIONS)
        lines.append("")
        if context_summary:
            lines.append(context_summary)
            lines.append("")

    lines.append(f"=== PART {part_number}/{total_parts} ===")
    lines.append("")

    for chunk in part.files:
        lines.append(_chunk_header(chunk))
        lines.append("```" + file_extension(chunk.path))
        lines.append(chunk.content)
        lines.append("```")
        lines.append("")

    if part_number < total_parts:
        lines.append("Please acknowledge receipt of this part.")
    else:
        lines.append("Please acknowledge receipt of this final part.")

    return "\n".join(lines)


def build_final_message(total_parts: int, prompt: str) -> str:
    return (
        f"Now that you have all the context ({total_parts} parts), "
        f"please answer my question:\n\n{prompt}"
    )


def render_files_inline(files: List[ContextFile]) -> str:
    blocks = [
        f"### File: {f.path}\n```{file_extension(f.path)}\n{f.content}\n```" for f in files
    ]
    return "\n\n".join(blocks)


def build_single_message(prompt: str, files: List[ContextFile]) -> str:
    """Prompt with every file inlined ahead of it."""
    if not files:
        return prompt
    return "Context - Project files:\n\n" + render_files_inline(files) + "\n\n" + prompt


def extract_code_blocks(content: str) -> List[CodeBlock]:
    """Fenced code blocks found in an answer, in order of appearance."""
    return [
        CodeBlock(language=lang or "text", code=code)
        for lang, code in _CODE_BLOCK_RE.findall(content)
    ]
