"""Tests for the command line interface."""

import json

import pytest

from anesthesia_rag import config
from anesthesia_rag.retrieval.embeddings import KeywordHashEmbedder
from main import CaseRAGSystem, main

SAMPLE_CASES = str(config.BASE_DIR / "data" / "sample_cases.json")


@pytest.fixture
def index_path(tmp_path):
    return str(tmp_path / "vector_store.json")


def run(*args, index_path):
    return main([*args, "--cases", SAMPLE_CASES, "--index-path", index_path, "--provider", "local"])


class TestCommands:
    def test_index_writes_vector_store(self, index_path, capsys):
        assert run("index", index_path=index_path) == 0
        with open(index_path) as f:
            data = json.load(f)
        assert len(data["vectors"]) == 5
        assert len(data["vectors"][0]) == config.EMBEDDING_DIMENSION
        assert "Indexed 5 cases" in capsys.readouterr().out

    def test_search_after_index(self, index_path, capsys):
        run("index", index_path=index_path)
        capsys.readouterr()
        assert run("search", "--query", "OSA patient with spinal anesthesia", "-k", "2", index_path=index_path) == 0
        out = capsys.readouterr().out
        assert "Loaded 5 indexed cases" in out
        assert "Retrieval time" in out

    def test_search_without_index_uses_keywords(self, index_path, capsys):
        assert run("search", "--query", "OSA patient with spinal anesthesia", index_path=index_path) == 0
        out = capsys.readouterr().out
        assert "(keyword)" in out
        assert "RELEVANT CLINICAL CASES FROM YOUR DATABASE" in out
        assert "Total knee arthroplasty" in out

    def test_cases_command(self, index_path, capsys):
        assert run("cases", "--query", "cardiac arrest", index_path=index_path) == 0
        out = capsys.readouterr().out
        assert out.startswith('📚 Loading cases')
        assert 'relevant case(s) for "cardiac arrest"' in out

    def test_cases_requires_query(self, index_path):
        assert run("cases", index_path=index_path) == 1

    def test_stats(self, index_path, capsys):
        assert run("stats", index_path=index_path) == 0
        out = capsys.readouterr().out
        assert '"total_cases": 5' in out

    def test_missing_cases_file(self, tmp_path, index_path):
        assert main(["stats", "--cases", str(tmp_path / "none.json"), "--index-path", index_path]) == 1


class TestCaseRAGSystem:
    def test_search_result(self, index_path):
        rag = CaseRAGSystem(SAMPLE_CASES, index_path, KeywordHashEmbedder())
        rag.load_cases()
        result = rag.search("pediatric pyloromyotomy", k=2)
        assert result.query == "pediatric pyloromyotomy"
        assert result.source == "keyword"
        assert "Pyloromyotomy" in [c.procedure for c in result.cases]
        assert result.retrieval_time >= 0
        assert result.prompt_context.startswith("\n\n📋 RELEVANT CLINICAL CASES")
