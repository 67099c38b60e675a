"""
Tests for the ai-router command line.

Graphs are written to a temporary file and executed against the offline stub,
so no provider credentials or network access are needed.
"""
import json

import pytest
from click.testing import CliRunner

from ai_router.stores.memory import InMemoryGraphStore
from cli.main import build_context, cli


@pytest.fixture
def graph_file(tmp_path):
    snapshot = {
        "project_id": "proj-cli",
        "user_id": "u1",
        "nodes": [
            {"node_id": "brief", "type": "text", "title": "Brief", "content": "A calm explainer video."},
            {"node_id": "cover", "type": "image", "title": "Cover", "meta": {"image_url": "https://img.test/c.png"}},
            {"node_id": "ai", "type": "ai", "title": "Writer", "content": "Write a short script"},
            {"node_id": "next", "type": "text", "title": "Script", "content": "Downstream"},
        ],
        "edges": [
            {"from": "brief", "to": "ai"},
            {"from": "cover", "to": "ai"},
            {"from": "ai", "to": "next"},
        ],
    }
    path = tmp_path / "graph.json"
    path.write_text(json.dumps(snapshot), encoding="utf-8")
    return path, snapshot


class TestBuildContext:
    """Execution context assembled from a graph snapshot."""

    def test_neighbours_and_files(self, graph_file):
        _, snapshot = graph_file
        ctx = build_context(snapshot, "ai", InMemoryGraphStore(), "TEXT_RESPONSE")

        assert ctx.project_id == "proj-cli"
        assert ctx.actor_user_id == "u1"
        assert [node.node_id for node in ctx.previous_nodes] == ["brief", "cover"]
        assert [node.node_id for node in ctx.next_nodes] == ["next"]
        assert [(file.name, file.content) for file in ctx.files] == [("Cover", "https://img.test/c.png")]
        assert all(edge.to == "ai" for edge in ctx.edges)


class TestRunCommand:
    """`ai-router run` against the offline stub."""

    def test_json_output(self, graph_file):
        path, _ = graph_file
        result = CliRunner().invoke(cli, ["run", str(path), "ai", "--format", "json"])

        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert payload["provider"] == "stub"
        assert payload["created_nodes"] == []
        assert "response" in json.loads(payload["output"])

    def test_rich_output(self, graph_file):
        path, _ = graph_file
        result = CliRunner().invoke(cli, ["run", str(path), "ai"])

        assert result.exit_code == 0, result.output
        assert "stub" in result.output
        assert "AI text response generated for node ai" in result.output

    def test_unknown_node(self, graph_file):
        path, _ = graph_file
        result = CliRunner().invoke(cli, ["run", str(path), "missing"])
        assert result.exit_code == 2
        assert "not found in graph" in result.output

    def test_router_errors_exit_with_status_1(self, graph_file, tmp_path):
        _, snapshot = graph_file
        snapshot["settings"] = {
            "ai": {"provider": "replicate"},
            "integrations": {"replicate": {"api_key": "R8_DEV_PLACEHOLDER_TOKEN"}},
        }
        path = tmp_path / "placeholder.json"
        path.write_text(json.dumps(snapshot), encoding="utf-8")

        result = CliRunner().invoke(cli, ["run", str(path), "ai"])

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "placeholder" in result.output


class TestInfoCommands:
    """`ai-router providers` and `ai-router config`."""

    def test_providers_lists_aliases(self):
        result = CliRunner().invoke(cli, ["providers"])
        assert result.exit_code == 0
        assert "local_stub" in result.output
        assert "replicate" in result.output

    def test_config_masks_secrets(self, monkeypatch):
        from shared.config import config as router_config

        monkeypatch.setattr(router_config, "openai_api_key", "sk-abcdef123456")
        result = CliRunner().invoke(cli, ["config", "--format", "json"])

        assert result.exit_code == 0
        assert "***3456" in result.output
        assert "sk-abcdef123456" not in result.output
