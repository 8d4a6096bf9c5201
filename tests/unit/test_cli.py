"""Unit tests for the CLI module, chatapp.cli.ingest.

The real composition root is used with one substitution: the embedding
provider is the deterministic mock, so no model download or API key is
needed.  Documents live in a temporary folder read by DirectorySource.
"""

from __future__ import annotations

from pathlib import Path

import pytest

import chatapp.main
from chatapp.cli.ingest import _build_parser, main
from chatapp.utils.errors import ConfigurationError, StoreReadError
from tests.conftest import MockEmbeddingProvider

_REFUNDS = "Refunds are processed within five business days of approval."
_BACKUPS = "Backups of the primary database run every night at two in the morning."


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ("OPENAI_API_KEY", "EMBEDDING_PROVIDER", "VECTOR_STORE_BACKEND", "CHUNK_SIZE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def docs_dir(tmp_path: Path) -> Path:
    root = tmp_path / "documents"
    root.mkdir()
    (root / "refunds.txt").write_text(_REFUNDS, encoding="utf-8")
    (root / "backups.txt").write_text(_BACKUPS, encoding="utf-8")
    return root


@pytest.fixture
def config_file(tmp_path: Path, docs_dir: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        f"data_dir: {docs_dir.as_posix()}\n"
        "embedding_provider: fastembed\n"
        f"sqlite_db_path: {(tmp_path / 'index.db').as_posix()}\n"
        "log_level: WARNING\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture(autouse=True)
def _mock_embeddings(monkeypatch: pytest.MonkeyPatch) -> None:
    real_build = chatapp.main.build_container

    async def _build(app_settings, **kwargs):
        kwargs.setdefault("embedding_provider", MockEmbeddingProvider())
        return await real_build(app_settings, **kwargs)

    monkeypatch.setattr(chatapp.main, "build_container", _build)


def _run(*argv: str) -> int:
    with pytest.raises(SystemExit) as exc_info:
        main(list(argv))
    return exc_info.value.code


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class TestParser:
    def test_search_options(self) -> None:
        args = _build_parser().parse_args(
            ["search", "refunds", "--top-k", "3", "--document", "a.txt", "--raw"]
        )
        assert args.command == "search"
        assert args.query == "refunds"
        assert args.top_k == 3
        assert args.document == "a.txt"
        assert args.raw is True

    def test_run_defaults(self) -> None:
        args = _build_parser().parse_args(["run"])
        assert args.dry_run is False
        assert args.config == "config/config.yaml"

    def test_no_command_exits_1(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert _run() == 1
        assert "usage" in capsys.readouterr().out.lower()


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------


class TestConfigurationErrors:
    def test_invalid_settings_exit_2(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        bad = tmp_path / "bad.yaml"
        bad.write_text("embedding_provider: openai\n", encoding="utf-8")
        assert _run("--config", str(bad), "stats") == 2
        assert "OPENAI_API_KEY" in capsys.readouterr().err

    def test_unknown_option_exit_2(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        bad = tmp_path / "bad.yaml"
        bad.write_text("embedding_provider: fastembed\nchunk_sise: 10\n", encoding="utf-8")
        assert _run("--config", str(bad), "run") == 2
        assert "chunk_sise" in capsys.readouterr().err

    def test_configuration_error_while_building_exit_2(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def _mismatch(app_settings, **kwargs):
            raise ConfigurationError(message="index was built with 384-dimensional vectors")

        monkeypatch.setattr(chatapp.main, "build_container", _mismatch)
        assert _run("--config", str(config_file), "stats") == 2

    def test_store_error_exit_1(
        self,
        config_file: Path,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        async def _broken(app_settings, **kwargs):
            raise StoreReadError(message="database is locked", provider_name="sqlite")

        monkeypatch.setattr(chatapp.main, "build_container", _broken)
        assert _run("--config", str(config_file), "stats") == 1
        assert "[sqlite] database is locked" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


class TestRun:
    def test_run_ingests_folder(
        self, config_file: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert _run("--config", str(config_file), "run") == 0
        out = capsys.readouterr().out
        assert "Ingestion complete: documents" in out
        assert "[     new] backups.txt  succeeded" in out
        assert "Succeeded:      2" in out

    def test_second_run_is_quiet(
        self, config_file: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        _run("--config", str(config_file), "run")
        capsys.readouterr()
        assert _run("--config", str(config_file), "run") == 0
        out = capsys.readouterr().out
        assert "Succeeded:      0" in out
        assert "Unchanged:      2" in out
        assert "backups.txt" not in out

    def test_failed_document_exit_1(
        self, config_file: Path, docs_dir: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        (docs_dir / "broken.txt").write_bytes(b"\xff\xfe\xfa not utf-8")
        assert _run("--config", str(config_file), "run") == 1
        out = capsys.readouterr().out
        assert "broken.txt  failed" in out
        assert "Succeeded:      2" in out

    def test_dry_run_writes_nothing(
        self, config_file: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert _run("--config", str(config_file), "run", "--dry-run") == 0
        assert "Ingestion plan (dry run)" in capsys.readouterr().out

        _run("--config", str(config_file), "stats")
        assert "Total documents: 0" in capsys.readouterr().out


class TestPlan:
    def test_plan_lists_changes(
        self, config_file: Path, docs_dir: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        _run("--config", str(config_file), "run")
        (docs_dir / "refunds.txt").write_text("Refunds take ten days now.", encoding="utf-8")
        (docs_dir / "backups.txt").unlink()
        capsys.readouterr()

        assert _run("--config", str(config_file), "plan") == 0
        out = capsys.readouterr().out
        assert "[modified] refunds.txt  planned" in out
        assert "[ removed] backups.txt  planned" in out


class TestSearch:
    def test_ranked_results(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        _run("--config", str(config_file), "run")
        capsys.readouterr()

        assert _run("--config", str(config_file), "search", _BACKUPS, "--top-k", "1") == 0
        out = capsys.readouterr().out
        assert " 1. [1.000] backups.txt, p.1" in out
        assert "refunds.txt" not in out

    def test_raw_output(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        _run("--config", str(config_file), "run")
        capsys.readouterr()

        _run("--config", str(config_file), "search", _REFUNDS, "--top-k", "1", "--raw")
        out = capsys.readouterr().out
        assert '<result source="refunds.txt" page="1">' in out
        assert _REFUNDS in out

    def test_empty_index(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert _run("--config", str(config_file), "search", "refunds") == 0
        assert "No results." in capsys.readouterr().out

    def test_blank_query_exit_1(
        self, config_file: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert _run("--config", str(config_file), "search", "   ") == 1
        assert "Error:" in capsys.readouterr().err


class TestStats:
    def test_stats_after_run(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        _run("--config", str(config_file), "run")
        capsys.readouterr()

        assert _run("--config", str(config_file), "stats") == 0
        out = capsys.readouterr().out
        assert "Corpus Statistics" in out
        assert "Total documents: 2" in out
        assert "Total chunks:    2" in out
        assert "Vector store:    sqlite" in out
        assert "Embedding:       mock-embedding" in out
        assert "documents: 2" in out
