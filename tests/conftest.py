"""Shared test fixtures for deskulpt-registry tests."""

import json
import os
import stat
import subprocess
from pathlib import Path
from typing import Any, NamedTuple

import pytest
from typer.testing import CliRunner

from deskulpt_registry.schema import (
    OrasPushOutput,
    PublishPlanEntry,
    Widget,
    WidgetManifest,
)

GIT_ENV = {
    **os.environ,
    "GIT_AUTHOR_NAME": "Test",
    "GIT_AUTHOR_EMAIL": "test@test.com",
    "GIT_COMMITTER_NAME": "Test",
    "GIT_COMMITTER_EMAIL": "test@test.com",
}

SHA1 = "0123456789abcdef0123456789abcdef01234567"
SHA256 = "0123456789abcdef" * 4
DIGEST = "sha256:" + "ab" * 32
CREATED = "2025-03-04T05:06:07Z"


def git_commit_all(work_dir: Path, message: str) -> str:
    """Stage all changes, commit, and return the new commit hash.

    Uses GIT_ENV for deterministic author/committer identity.
    """
    subprocess.run(["git", "add", "-A"], cwd=work_dir, check=True, capture_output=True)
    subprocess.run(
        ["git", "commit", "-m", message],
        cwd=work_dir, check=True, capture_output=True, env=GIT_ENV,
    )
    return subprocess.run(
        ["git", "rev-parse", "HEAD"],
        cwd=work_dir, check=True, capture_output=True, text=True,
    ).stdout.strip()


def manifest_data(**overrides: Any) -> dict[str, Any]:
    """Valid deskulpt.widget.json content."""
    data: dict[str, Any] = {
        "name": "Clock",
        "version": "1.0.0",
        "authors": ["A"],
        "license": "MIT",
        "description": "A clock",
        "homepage": "https://example.com",
    }
    data.update(overrides)
    return data


def widget_data(**overrides: Any) -> dict[str, Any]:
    """Valid widget source declaration."""
    data: dict[str, Any] = {
        "version": "1.0.0",
        "repo": "https://example.com/r.git",
        "commit": SHA1,
    }
    data.update(overrides)
    return data


def plan_entry_data(
    handle: str = "acme",
    widget_id: str = "clock",
    widget: dict[str, Any] | None = None,
    manifest: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Valid publish plan entry as it appears on a plan line."""
    return {
        "handle": handle,
        "id": widget_id,
        "widget": widget or widget_data(),
        "manifest": manifest or manifest_data(),
    }


def make_plan_entry(**kwargs: Any) -> PublishPlanEntry:
    """Build a validated PublishPlanEntry."""
    return PublishPlanEntry.model_validate(plan_entry_data(**kwargs))


def write_plan(path: Path, entries: list[dict[str, Any]]) -> Path:
    """Write plan entries as newline-delimited JSON."""
    path.write_text("".join(json.dumps(entry) + "\n" for entry in entries))
    return path


def push_output_data(**overrides: Any) -> dict[str, Any]:
    """Descriptor as printed by ``oras push --format json``."""
    data: dict[str, Any] = {
        "mediaType": "application/vnd.oci.image.manifest.v1+json",
        "digest": DIGEST,
        "size": 1234,
        "annotations": {"org.opencontainers.image.created": CREATED},
        "artifactType": "application/vnd.deskulpt.widget.v1",
        "reference": f"ghcr.io/deskulpt/widgets/acme/clock@{DIGEST}",
        "referenceAsTags": ["ghcr.io/deskulpt/widgets/acme/clock:v1.0.0"],
    }
    data.update(overrides)
    return data


class FakeSourceFetcher:
    """SourceFetcher that writes a marker file instead of cloning."""

    def __init__(self, fail_on: str | None = None) -> None:
        self.fail_on = fail_on
        self.calls: list[tuple[Path, Widget]] = []

    def checkout(self, target_dir: Path, widget: Widget) -> None:
        self.calls.append((target_dir, widget))
        if widget.repo == self.fail_on:
            msg = f"cannot fetch {widget.repo}"
            raise RuntimeError(msg)
        widget_dir = target_dir / widget.path if widget.path else target_dir
        widget_dir.mkdir(parents=True, exist_ok=True)
        (widget_dir / "index.jsx").write_text(f"// {widget.commit}\n")


class FakeArtifactPublisher:
    """ArtifactPublisher that records pushes and returns canned descriptors."""

    def __init__(self, created: str | None = CREATED, digests: list[str] | None = None) -> None:
        self.created = created
        self.digests = list(digests or [])
        self.pushes: list[dict[str, Any]] = []

    def push(
        self,
        src: Path,
        dst: str,
        widget: Widget,
        manifest: WidgetManifest,
        dry_run: bool = False,
    ) -> OrasPushOutput:
        self.pushes.append({
            "src": src,
            "dst": dst,
            "widget": widget,
            "manifest": manifest,
            "dry_run": dry_run,
            "files": sorted(p.name for p in src.iterdir()),
        })
        digest = self.digests.pop(0) if self.digests else DIGEST
        annotations = {} if self.created is None else {"org.opencontainers.image.created": self.created}
        return OrasPushOutput.model_validate(
            push_output_data(digest=digest, annotations=annotations)
        )


class FakeGitRepo(NamedTuple):
    """Result of creating a fake git repo for testing."""

    url: str
    commit_hash: str
    work_dir: Path


def create_fake_widget_repo(tmp_path: Path, subdir: str | None = None) -> FakeGitRepo:
    """Create a local git repo holding a widget, at the root or in *subdir*.

    Returns:
        FakeGitRepo with file:// URL, commit hash and working directory.
    """
    work_dir = tmp_path / "widget-repo"
    work_dir.mkdir()
    (work_dir / "README.md").write_text("# Widgets\n")

    widget_root = work_dir / subdir if subdir else work_dir
    widget_root.mkdir(parents=True, exist_ok=True)
    (widget_root / "deskulpt.widget.json").write_text(json.dumps(manifest_data()))
    (widget_root / "index.jsx").write_text("export default () => null;\n")

    if subdir:
        other = work_dir / "other"
        other.mkdir()
        (other / "unrelated.txt").write_text("not part of the widget\n")

    subprocess.run(["git", "init"], cwd=work_dir, check=True, capture_output=True)
    commit_hash = git_commit_all(work_dir, "Initial")

    return FakeGitRepo(url=f"file://{work_dir}", commit_hash=commit_hash, work_dir=work_dir)


def write_fake_oras(path: Path, stdout: str, exit_code: int = 0) -> Path:
    """Write an executable that records its arguments and prints *stdout*.

    Arguments are written one per line to ``<path>.args`` and the working
    directory to ``<path>.cwd``.
    """
    output_file = path.with_suffix(".out")
    output_file.write_text(stdout)
    lines = [
        "#!/bin/sh",
        f'printf "%s\\n" "$@" > "{path}.args"',
        f'pwd > "{path}.cwd"',
        f'cat "{output_file}"',
    ]
    if exit_code != 0:
        lines.append('echo "oras failed" >&2')
    lines.append(f"exit {exit_code}")
    path.write_text("\n".join(lines) + "\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def publish_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> dict[str, Path]:
    """Set the required environment variables to paths under tmp_path."""
    plan_path = tmp_path / "plan.jsonl"
    registry_dir = tmp_path / "registry"
    monkeypatch.setenv("GHCR_REPO_PREFIX", "ghcr.io/deskulpt/widgets")
    monkeypatch.setenv("PUBLISH_PLAN_PATH", str(plan_path))
    monkeypatch.setenv("REGISTRY_DIR", str(registry_dir))
    return {"plan_path": plan_path, "registry_dir": registry_dir}
