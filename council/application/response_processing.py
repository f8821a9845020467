"""Post-processing of raw provider text.

The default processor understands the mapper's output conventions: a
narrative, an optional ``ALL_AVAILABLE_OPTIONS`` section and a claim-graph
topology given either after a ``===GRAPH_TOPOLOGY===`` header or as the
last fenced ```json block.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)

_ARTIFACT_BLOCK = re.compile(r"<(artifact|document)\b[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_TOPOLOGY_HEADER = re.compile(r"={3,}\s*GRAPH[_\s]*TOPOLOGY\s*={3,}", re.IGNORECASE)
_OPTIONS_HEADER = re.compile(
    r"(?:^|\n)(?:#{1,3}\s*)?(?:\*\*)?\s*={0,}\s*ALL[_\s]*(?:AVAILABLE[_\s]*)?OPTIONS\s*={0,}\s*(?:\*\*)?\s*(?:\n|$)",
    re.IGNORECASE,
)
_JSON_FENCE = re.compile(r"```json\s*\n(.*?)\n```", re.DOTALL)
_BOLD_ITEM = re.compile(r"^\s*(?:[-*]|\d+[.)])?\s*\*\*(.+?)\*\*")
_LIST_ITEM = re.compile(r"^\s*(?:[-*]|\d+[.)])\s+([^:\n]+)")


@dataclass
class MappingParse:
    narrative: str
    topology: dict[str, Any] | None = None
    options: str | None = None
    option_titles: list[str] = field(default_factory=list)


class ResponseProcessor(Protocol):
    def clean(self, text: str) -> str:
        ...

    def process_mapping_response(self, text: str) -> MappingParse:
        ...


def _decode_first_object(text: str) -> tuple[dict[str, Any] | None, int, int]:
    """Decode the first JSON object in ``text``; returns (obj, start, end)."""
    start = text.find("{")
    decoder = json.JSONDecoder()
    while start != -1:
        try:
            obj, end = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            return obj, start, end
        start = text.find("{", end)
    return None, -1, -1


def parse_option_titles(options: str | None) -> list[str]:
    """Titles of the options listed in an options section."""
    if not options:
        return []
    titles: list[str] = []
    for line in options.splitlines():
        match = _BOLD_ITEM.match(line) or _LIST_ITEM.match(line)
        if not match:
            continue
        title = match.group(1).strip().rstrip(":").strip()
        if title and title not in titles:
            titles.append(title)
    return titles


class DefaultResponseProcessor:
    """Processor used when the host injects none."""

    def clean(self, text: str) -> str:
        """Strip embedded artifact blocks and surrounding whitespace."""
        if not text:
            return ""
        return _ARTIFACT_BLOCK.sub("", text).strip()

    def extract_topology(self, text: str) -> tuple[str, dict[str, Any] | None]:
        header = _TOPOLOGY_HEADER.search(text)
        if header:
            before = text[: header.start()].rstrip()
            rest = text[header.end():]
            topology, _, end = _decode_first_object(rest)
            if topology is None:
                logger.warning("Graph topology header found but no JSON object followed it")
                return before, None
            after = rest[end:].strip().removeprefix("```").strip()
            return (f"{before}\n{after}" if after else before), topology

        fences = list(_JSON_FENCE.finditer(text))
        for fence in reversed(fences):
            try:
                candidate = json.loads(fence.group(1))
            except json.JSONDecodeError:
                continue
            if isinstance(candidate, dict) and ("claims" in candidate or "nodes" in candidate):
                stripped = (text[: fence.start()] + text[fence.end():]).strip()
                return stripped, candidate
        return text, None

    def process_mapping_response(self, text: str) -> MappingParse:
        cleaned = self.clean(text)
        without_topology, topology = self.extract_topology(cleaned)

        options: str | None = None
        narrative = without_topology
        header = _OPTIONS_HEADER.search(without_topology)
        if header:
            narrative = without_topology[: header.start()].rstrip()
            options = without_topology[header.end():].strip() or None

        return MappingParse(
            narrative=narrative.strip(),
            topology=topology,
            options=options,
            option_titles=parse_option_titles(options),
        )
