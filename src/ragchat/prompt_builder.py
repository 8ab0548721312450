"""Utilities for constructing the grounded system instruction."""
from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

from ragchat.vectorstore import SearchResult

_PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"
_SYSTEM_PROMPT_PATH = _PROMPTS_DIR / "system.txt"
_NO_CONTEXT_PATH = _PROMPTS_DIR / "no_context.txt"


def _load_template(path: Path) -> str:
    """Read and trim the contents of a template file."""
    return path.read_text(encoding="utf-8").strip()


_SYSTEM_TEMPLATE = _load_template(_SYSTEM_PROMPT_PATH)
NO_CONTEXT_TEXT = _load_template(_NO_CONTEXT_PATH)


def format_result(result: SearchResult) -> str:
    return f"Document: {result.chunk.title}\nContent: {result.chunk.content}"


class ContextAssembler:
    """Weave retrieved chunks into the fixed instruction template."""

    def __init__(self, template: str = _SYSTEM_TEMPLATE, no_context_text: str = NO_CONTEXT_TEXT) -> None:
        self.template = template
        self.no_context_text = no_context_text

    def assemble(self, query: str, retrieved: Sequence[SearchResult]) -> str:
        """Return the system instruction for *query* grounded in *retrieved*.

        Results keep their search order; an empty sequence produces the
        "no relevant content" variant of the same template.
        """

        sections: List[str] = [format_result(result) for result in retrieved]
        context_block = "\n\n".join(sections) if sections else self.no_context_text
        return self.template.format(context=context_block, query=query.strip())


def build_prompt(query: str, retrieved: Sequence[SearchResult]) -> str:
    """Compose the system instruction with the default template."""

    return ContextAssembler().assemble(query, retrieved)


__all__ = ["ContextAssembler", "NO_CONTEXT_TEXT", "build_prompt", "format_result"]
