"""Prompt construction for each step type.

Prompt wording is owned by the host; ``TemplatePromptBuilder`` is a plain
default good enough for the CLI and tests.
"""

from typing import Protocol

from council.domain.models.consensus import ProblemStructure


class PromptBuilder(Protocol):
    def build_batch_prompt(self, user_message: str, previous_context: str | None) -> str:
        ...

    def build_mapping_prompt(
        self, original_prompt: str, sources: dict[str, str], citation_order: dict[int, str]
    ) -> str:
        ...

    def build_synthesis_prompt(
        self,
        original_prompt: str,
        sources: dict[str, str],
        mapping_text: str,
        option_titles: list[str],
    ) -> str:
        ...

    def build_refiner_prompt(
        self,
        original_prompt: str,
        sources: dict[str, str],
        synthesis_text: str,
        mapping_text: str,
        option_titles: list[str],
    ) -> str:
        ...

    def build_antagonist_prompt(
        self,
        original_prompt: str,
        sources: dict[str, str],
        synthesis_text: str,
        mapping_text: str,
        option_titles: list[str],
        refiner_text: str,
    ) -> str:
        ...

    def build_understand_prompt(
        self,
        original_prompt: str,
        mapping_text: str,
        structure: ProblemStructure | None,
        user_notes: str | None,
    ) -> str:
        ...

    def build_gauntlet_prompt(
        self,
        original_prompt: str,
        mapping_text: str,
        structure: ProblemStructure | None,
        user_notes: str | None,
    ) -> str:
        ...


def _section(title: str, body: str) -> str:
    return f"## {title}\n\n{body.strip()}\n"


def _sources_block(sources: dict[str, str]) -> str:
    return "\n".join(
        f"<response model=\"{pid}\">\n{text.strip()}\n</response>" for pid, text in sources.items()
    )


def _options_block(option_titles: list[str]) -> str:
    return "\n".join(f"- {title}" for title in option_titles)


class TemplatePromptBuilder:
    """Default plain-text templates."""

    def build_batch_prompt(self, user_message: str, previous_context: str | None) -> str:
        if not previous_context:
            return user_message
        return (
            "You are part of a council of models answering the same question. "
            "Here is what the council concluded in the previous turn:\n\n"
            f"<previous_context>\n{previous_context.strip()}\n</previous_context>\n\n"
            f"Now answer the user's new message:\n\n{user_message}"
        )

    def build_mapping_prompt(
        self, original_prompt: str, sources: dict[str, str], citation_order: dict[int, str]
    ) -> str:
        index_of = {pid: idx for idx, pid in citation_order.items()}
        numbered = "\n".join(
            f"[{index_of[pid]}] <response>\n{text.strip()}\n</response>"
            for pid, text in sources.items()
            if pid in index_of
        )
        return "\n".join(
            [
                _section("Question", original_prompt),
                _section("Model responses", numbered),
                _section(
                    "Task",
                    "Extract the distinct claims made across the responses. Cite "
                    "supporters by their bracketed number. Write a short narrative, then "
                    "an ===ALL_AVAILABLE_OPTIONS=== section listing every option as "
                    "**Title**: description, then ===GRAPH_TOPOLOGY=== followed by JSON "
                    '{"claims": [{"id", "label", "text", "supporters", "type", "role"}], '
                    '"edges": [{"from", "to", "type"}]}.',
                ),
            ]
        )

    def build_synthesis_prompt(
        self,
        original_prompt: str,
        sources: dict[str, str],
        mapping_text: str,
        option_titles: list[str],
    ) -> str:
        parts = [_section("Question", original_prompt), _section("Model responses", _sources_block(sources))]
        if mapping_text:
            parts.append(_section("Claim map", mapping_text))
        if option_titles:
            parts.append(_section("Options identified", _options_block(option_titles)))
        parts.append(
            _section("Task", "Synthesize one answer that keeps what the responses got right.")
        )
        return "\n".join(parts)

    def build_refiner_prompt(
        self,
        original_prompt: str,
        sources: dict[str, str],
        synthesis_text: str,
        mapping_text: str,
        option_titles: list[str],
    ) -> str:
        parts = [
            _section("Question", original_prompt),
            _section("Synthesis", synthesis_text or "(no synthesis available)"),
            _section("Model responses", _sources_block(sources)),
        ]
        if mapping_text:
            parts.append(_section("Claim map", mapping_text))
        if option_titles:
            parts.append(_section("Options identified", _options_block(option_titles)))
        parts.append(
            _section(
                "Task",
                "Audit the synthesis: what did it overclaim, what did it miss, and how "
                "reliable is it overall?",
            )
        )
        return "\n".join(parts)

    def build_antagonist_prompt(
        self,
        original_prompt: str,
        sources: dict[str, str],
        synthesis_text: str,
        mapping_text: str,
        option_titles: list[str],
        refiner_text: str,
    ) -> str:
        base = self.build_refiner_prompt(
            original_prompt, sources, synthesis_text, mapping_text, option_titles
        )
        head, _, _ = base.rpartition("## Task")
        parts = [head.rstrip() + "\n"]
        if refiner_text:
            parts.append(_section("Refiner audit", refiner_text))
        parts.append(
            _section(
                "Task",
                "Argue against the synthesis. Find the question the user should have asked.",
            )
        )
        return "\n".join(parts)

    def _structured_prompt(
        self,
        original_prompt: str,
        mapping_text: str,
        structure: ProblemStructure | None,
        user_notes: str | None,
        role: str,
        task: str,
    ) -> str:
        parts = [_section("Question", original_prompt), _section("Claim map", mapping_text)]
        if structure is not None:
            shape = (
                f"Pattern: {structure.primary_pattern.value} "
                f"(confidence {structure.confidence:.2f})\n"
                + "\n".join(f"- {line}" for line in structure.evidence)
            )
            implication = structure.implications.get(role)
            if implication:
                shape += f"\n\n{implication}"
            parts.append(_section("Problem structure", shape))
        if user_notes:
            parts.append(_section("User notes", user_notes))
        parts.append(_section("Task", task))
        return "\n".join(parts)

    def build_understand_prompt(
        self,
        original_prompt: str,
        mapping_text: str,
        structure: ProblemStructure | None,
        user_notes: str | None,
    ) -> str:
        return self._structured_prompt(
            original_prompt,
            mapping_text,
            structure,
            user_notes,
            "understand",
            "Explain the single insight that makes the claim map make sense.",
        )

    def build_gauntlet_prompt(
        self,
        original_prompt: str,
        mapping_text: str,
        structure: ProblemStructure | None,
        user_notes: str | None,
    ) -> str:
        return self._structured_prompt(
            original_prompt,
            mapping_text,
            structure,
            user_notes,
            "gauntlet",
            "Stress-test every claim and keep only what survives.",
        )
