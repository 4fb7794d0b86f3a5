"""Context assembly: pack ranked items and summaries into a token budget.

Layout::

    # Memory Context

    ## Previous Sessions          (up to 3 summaries, always emitted)
    - **Learned**: ...
    - **Completed**: ...
    - **Next steps**: ...

    ## Relevant Observations      (greedy, stops when the budget runs out)
    - **[decision] Use WAL mode**: ...

    > Project: demo | Items: 4/12 | Tokens used: ~512/2000

Tokens are estimated as characters / 4.  Summaries count toward usage but
are never cut by the budget; only the observation loop is bounded.

No I/O, no database access, no async.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from memplane.config.constants import CHARS_PER_TOKEN
from memplane.search.models import ContextResult, ScoredItem
from memplane.search.scoring import estimate_tokens

DEFAULT_TOKEN_BUDGET = 2000
DEFAULT_MAX_SUMMARIES = 3
DEFAULT_ITEM_CONTENT_CAP = 300

HEADER = "# Memory Context\n\n"
SUMMARIES_HEADING = "## Previous Sessions\n\n"
ITEMS_HEADING = "## Relevant Observations\n\n"


class SummaryLike(Protocol):
    learned: str | None
    completed: str | None
    next_steps: str | None


class _TokenBudget:
    """Running token estimate against a fixed budget."""

    __slots__ = ("budget", "used")

    def __init__(self, budget: int) -> None:
        self.budget = budget
        self.used = 0

    def spend(self, text: str) -> None:
        self.used += estimate_tokens(text)

    def remaining_after(self, prefix: str) -> int:
        """Tokens left for content once ``prefix`` and the newline are paid for."""
        return self.budget - self.used - estimate_tokens(prefix) - 1


class ContextAssembler:
    """Greedy, budget-bounded renderer for retrieval results."""

    def __init__(
        self,
        *,
        max_summaries: int = DEFAULT_MAX_SUMMARIES,
        item_content_cap: int = DEFAULT_ITEM_CONTENT_CAP,
    ) -> None:
        self.max_summaries = max_summaries
        self.item_content_cap = item_content_cap

    def build_context(
        self,
        items: Sequence[ScoredItem],
        summaries: Sequence[SummaryLike],
        project: str,
        token_budget: int = DEFAULT_TOKEN_BUDGET,
    ) -> ContextResult:
        """Render ranked ``items`` (already in order) plus summaries.

        Never raises for empty input or a zero/negative budget; the
        output then holds only header, summaries and footer.
        """
        tracker = _TokenBudget(token_budget)
        parts: list[str] = [HEADER]
        tracker.spend(HEADER)

        section = self._render_summaries(summaries)
        if section:
            parts.append(section)
            tracker.spend(section)

        included = 0
        if items:
            item_lines = [ITEMS_HEADING]
            tracker.spend(ITEMS_HEADING)
            for item in items:
                prefix = f"- **[{item.type}] {item.title}**: "
                remaining = tracker.remaining_after(prefix)
                if remaining <= 0:
                    break
                max_chars = min(remaining * CHARS_PER_TOKEN, self.item_content_cap)
                line = f"{prefix}{item.content[:max_chars]}\n"
                item_lines.append(line)
                tracker.spend(line)
                included += 1
            parts.append("".join(item_lines))

        parts.append(
            f"\n> Project: {project} | Items: {included}/{len(items)}"
            f" | Tokens used: ~{tracker.used}/{token_budget}\n"
        )
        return ContextResult(
            text="".join(parts),
            items_included=included,
            tokens_used=tracker.used,
            tokens_budget=token_budget,
        )

    def _render_summaries(self, summaries: Sequence[SummaryLike]) -> str:
        if not summaries:
            return ""
        lines = [SUMMARIES_HEADING]
        for summary in summaries[: self.max_summaries]:
            if summary.learned:
                lines.append(f"- **Learned**: {summary.learned}\n")
            if summary.completed:
                lines.append(f"- **Completed**: {summary.completed}\n")
            if summary.next_steps:
                lines.append(f"- **Next steps**: {summary.next_steps}\n")
            lines.append("\n")
        return "".join(lines)
