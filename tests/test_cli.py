from __future__ import annotations

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from conftest import make_pr
from prchangelog.bitbucket import BitbucketAPIError
from prchangelog.cli import main
from prchangelog.releases import Release


@pytest.fixture
def repo(tmp_path, monkeypatch):
    monkeypatch.setenv("BITBUCKET_USER", "alice")
    monkeypatch.setenv("BITBUCKET_PSWD", "secret")
    (tmp_path / "prchangelog.yml").write_text(
        "host: https://bb.example.com\nproject_key: PROJ\nrepository_key: repo\n"
    )
    (tmp_path / "pyproject.toml").write_text('[project]\nname = "x"\nversion = "2.0.0"\n')
    with patch("prchangelog.cli.get_repo_root", return_value=tmp_path), \
         patch("prchangelog.cli.load_dotenv"):
        yield tmp_path


def test_cli_help_shows_commands():
    runner = CliRunner()
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    assert "generate" in result.output
    assert "init" in result.output


def test_cli_generate_prepends_release(repo):
    (repo / "CHANGES.md").write_text("## 1.0.0\n")
    releases = [Release(version="2.0.0", date=0, prs=[make_pr(1, 0)])]

    with patch("prchangelog.cli.build_releases", return_value=releases) as build:
        result = CliRunner().invoke(main, ["generate"])

    assert result.exit_code == 0, result.output
    assert "2.0.0 written to CHANGES.md" in result.output
    config = build.call_args.args[1]
    assert config.version == "2.0.0"
    assert config.base_url == "https://bb.example.com/rest/api/1.0/projects/PROJ/repos/repo"
    contents = (repo / "CHANGES.md").read_text()
    assert contents.startswith("## 2.0.0\n")
    assert contents.endswith("\n\n## 1.0.0\n")


def test_cli_generate_aborts_when_version_already_released(repo):
    (repo / "CHANGES.md").write_text("## 2.0.0\n")

    with patch("prchangelog.cli.build_releases") as build:
        result = CliRunner().invoke(main, ["generate"])

    assert result.exit_code == 1
    assert "Release 2.0.0 was already found in changelog" in result.output
    build.assert_not_called()


def test_cli_generate_overwrite_replaces_file(repo):
    (repo / "CHANGES.md").write_text("## 2.0.0\nstale\n")
    releases = [Release(version="2.0.0", date=0, prs=[make_pr(1, 0)])]

    with patch("prchangelog.cli.build_releases", return_value=releases):
        result = CliRunner().invoke(main, ["generate", "--overwrite"])

    assert result.exit_code == 0, result.output
    assert "stale" not in (repo / "CHANGES.md").read_text()


def test_cli_generate_reports_api_errors_and_writes_nothing(repo):
    with patch("prchangelog.cli.build_releases", side_effect=BitbucketAPIError("Bitbucket API error: 401 - nope", 401)):
        result = CliRunner().invoke(main, ["generate"])

    assert result.exit_code == 1
    assert "401" in result.output
    assert not (repo / "CHANGES.md").exists()


def test_cli_generate_missing_issue_reference_writes_nothing(repo):
    releases = [Release(version="2.0.0", prs=[make_pr(1, 0, title="Tidy", from_ref="tidy")])]

    with patch("prchangelog.cli.build_releases", return_value=releases):
        result = CliRunner().invoke(main, ["generate"])

    assert result.exit_code == 1
    assert "Issue reference not found" in result.output
    assert not (repo / "CHANGES.md").exists()


def test_cli_generate_missing_credentials(repo, monkeypatch):
    monkeypatch.delenv("BITBUCKET_USER")

    with patch("prchangelog.cli.build_releases") as build:
        result = CliRunner().invoke(main, ["generate"])

    assert result.exit_code == 1
    assert "BITBUCKET_USER" in result.output
    build.assert_not_called()


def test_cli_generate_interactive_prompts_for_credentials(repo, monkeypatch):
    monkeypatch.delenv("BITBUCKET_USER")
    monkeypatch.delenv("BITBUCKET_PSWD")
    releases = [Release(version="2.0.0", prs=[make_pr(1, 0)])]

    with patch("prchangelog.cli.build_releases", return_value=releases) as build:
        result = CliRunner().invoke(main, ["generate", "-i"], input="bob\nhunter2\n")

    assert result.exit_code == 0, result.output
    config = build.call_args.args[1]
    assert config.username == "bob"
    assert config.password == "hunter2"


def test_cli_generate_release_version_option(repo):
    releases = [Release(version="9.9.9", prs=[make_pr(1, 0)])]

    with patch("prchangelog.cli.build_releases", return_value=releases) as build:
        result = CliRunner().invoke(main, ["generate", "--release-version", "9.9.9", "-b", "develop"])

    assert result.exit_code == 0, result.output
    config = build.call_args.args[1]
    assert config.version == "9.9.9"
    assert config.branch == "develop"


def test_cli_init_writes_sample_config(tmp_path):
    with patch("prchangelog.cli.get_repo_root", return_value=tmp_path):
        result = CliRunner().invoke(main, ["init"])
        again = CliRunner().invoke(main, ["init"])

    assert result.exit_code == 0
    assert (tmp_path / "prchangelog.yml").exists()
    assert "Skipped" in again.output


def test_cli_generate_reports_malformed_config(repo):
    (repo / "prchangelog.yml").write_text("host: [unclosed\n")

    with patch("prchangelog.cli.build_releases") as build:
        result = CliRunner().invoke(main, ["generate"])

    assert result.exit_code == 1
    assert "Invalid prchangelog.yml" in result.output
    assert result.exception is None or isinstance(result.exception, SystemExit)
    build.assert_not_called()


def test_cli_generate_reports_malformed_pyproject(repo):
    (repo / "pyproject.toml").write_text("[project\n")

    result = CliRunner().invoke(main, ["generate"])

    assert result.exit_code == 1
    assert "Invalid pyproject.toml" in result.output
