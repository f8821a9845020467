"""Tests for DefaultResponseProcessor."""

import json

import pytest

from council.application.response_processing import DefaultResponseProcessor, parse_option_titles
from tests.conftest import claim, mapping_text


@pytest.fixture
def processor() -> DefaultResponseProcessor:
    return DefaultResponseProcessor()


class TestClean:
    def test_strips_artifact_and_document_blocks(self, processor: DefaultResponseProcessor) -> None:
        text = "Answer.\n<artifact id='a'>code</artifact>\n<DOCUMENT>doc\nbody</DOCUMENT>\n"
        assert processor.clean(text) == "Answer."

    def test_empty_text(self, processor: DefaultResponseProcessor) -> None:
        assert processor.clean("") == ""


class TestProcessMappingResponse:
    """Tests for process_mapping_response()."""

    def test_header_layout(self, processor: DefaultResponseProcessor) -> None:
        text = mapping_text([claim("a", [1])], options=["Use Postgres", "Use SQLite"])

        parsed = processor.process_mapping_response(text)

        assert parsed.narrative == "The council mostly agrees."
        assert parsed.topology["claims"][0]["id"] == "a"
        assert parsed.option_titles == ["Use Postgres", "Use SQLite"]
        assert parsed.options.startswith("- **Use Postgres**")

    def test_header_followed_by_json_fence(self, processor: DefaultResponseProcessor) -> None:
        body = json.dumps({"claims": [claim("a", [1])], "edges": []})
        text = f"Narrative here.\n===GRAPH_TOPOLOGY===\n```json\n{body}\n```\n"

        parsed = processor.process_mapping_response(text)

        assert parsed.narrative == "Narrative here."
        assert parsed.topology["claims"][0]["id"] == "a"

    def test_last_json_fence_with_claims(self, processor: DefaultResponseProcessor) -> None:
        unrelated = json.dumps({"note": "not a graph"})
        graph = json.dumps({"nodes": [claim("n1", [2])]})
        text = f"Story.\n```json\n{unrelated}\n```\nMore.\n```json\n{graph}\n```"

        parsed = processor.process_mapping_response(text)

        assert parsed.topology == {"nodes": [claim("n1", [2])]}
        assert "not a graph" in parsed.narrative
        assert "n1" not in parsed.narrative

    def test_no_topology(self, processor: DefaultResponseProcessor) -> None:
        parsed = processor.process_mapping_response("Only prose.")

        assert parsed.narrative == "Only prose."
        assert parsed.topology is None
        assert parsed.option_titles == []

    def test_header_without_json(self, processor: DefaultResponseProcessor) -> None:
        parsed = processor.process_mapping_response("Prose.\n===GRAPH_TOPOLOGY===\nnothing here")

        assert parsed.topology is None
        assert parsed.narrative == "Prose."


class TestParseOptionTitles:
    def test_bold_and_numbered_items(self) -> None:
        options = "1. **Postgres**: relational\n- Redis: cache\n* **Postgres**: again\nplain line"
        assert parse_option_titles(options) == ["Postgres", "Redis"]

    def test_none(self) -> None:
        assert parse_option_titles(None) == []
