"""Publish orchestration.

Drives the pipeline one plan entry at a time: stage the widget source,
push it as an artifact, and remember the result. Once every entry has been
pushed, the results are folded into the registry index, which is written
exactly once. Any failure aborts the run before that write, so a failed run
never leaves a partially updated index behind.
"""

import shutil
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Protocol

from deskulpt_registry import cli_logger, git, oras
from deskulpt_registry.config import PublishConfig
from deskulpt_registry.schema import (
    REGISTRY_API_VERSION,
    OrasPushOutput,
    PublishPlanEntry,
    RegistryEntry,
    RegistryEntryRelease,
    RegistryIndex,
    Widget,
    WidgetManifest,
    format_timestamp,
    parse_publish_plan,
    parse_registry_index,
    utcnow,
    validate_timestamp,
    write_registry_index,
)

Clock = Callable[[], datetime]


class SourceFetcher(Protocol):
    """Protocol for staging a widget's source tree."""

    def checkout(self, target_dir: Path, widget: Widget) -> None:
        """Populate *target_dir* with the widget's files at its pinned commit."""
        ...


class ArtifactPublisher(Protocol):
    """Protocol for pushing a staged widget as an artifact."""

    def push(
        self,
        src: Path,
        dst: str,
        widget: Widget,
        manifest: WidgetManifest,
        dry_run: bool = False,
    ) -> OrasPushOutput:
        """Push the contents of *src* to *dst* and return the descriptor."""
        ...


class GitSourceFetcher:
    """Stages widget sources with git."""

    def checkout(self, target_dir: Path, widget: Widget) -> None:
        """Check out the widget repository at its pinned commit and path."""
        git.checkout_repo_at_commit(target_dir, widget.repo, widget.commit, widget.path)


class OrasArtifactPublisher:
    """Pushes widget artifacts with the oras CLI."""

    def push(
        self,
        src: Path,
        dst: str,
        widget: Widget,
        manifest: WidgetManifest,
        dry_run: bool = False,
    ) -> OrasPushOutput:
        """Push via ``oras push``."""
        return oras.push(src, dst, widget, manifest, dry_run=dry_run)


@dataclass
class RegistryUpdate:
    """A pushed plan entry waiting to be merged into the index."""

    entry: PublishPlanEntry
    published_at: str
    digest: str


@dataclass
class PublishResult:
    """Outcome of a complete publish run."""

    updates: list[RegistryUpdate]
    index: RegistryIndex
    index_path: Path


def _reset_dir(path: Path) -> None:
    """Remove *path* if present and recreate it empty."""
    shutil.rmtree(path, ignore_errors=True)
    path.mkdir(parents=True)


def widget_dir_for(staging_dir: Path, widget: Widget) -> Path:
    """Directory inside the staging area that holds the widget itself."""
    if widget.path is None:
        return staging_dir
    return staging_dir / widget.path


def resolve_published_at(push_result: OrasPushOutput, clock: Clock) -> str:
    """Prefer the creation time stamped by oras as-is, else read the clock now."""
    created = (push_result.annotations or {}).get(oras.CREATED_ANNOTATION)
    if created is not None:
        return validate_timestamp(created, f"{oras.CREATED_ANNOTATION} annotation")
    return format_timestamp(clock())


def publish_entry(
    entry: PublishPlanEntry,
    staging_dir: Path,
    repo_prefix: str,
    fetcher: SourceFetcher,
    publisher: ArtifactPublisher,
    *,
    dry_run: bool = False,
    clock: Clock = utcnow,
) -> RegistryUpdate:
    """Stage, push and record a single plan entry.

    The staging directory is shared between entries and wiped first, so
    entries must never be published concurrently.

    Returns:
        The update to merge into the registry index.
    """
    label = f"{entry.handle}/{entry.id}"

    _reset_dir(staging_dir)
    fetcher.checkout(staging_dir, entry.widget)

    with cli_logger.group(f"[{label}] Publishing widget..."):
        remote = f"{repo_prefix}/{entry.handle}/{entry.id}"
        push_result = publisher.push(
            widget_dir_for(staging_dir, entry.widget),
            remote,
            entry.widget,
            entry.manifest,
            dry_run=dry_run,
        )
        cli_logger.raw(push_result.model_dump_json(by_alias=True, exclude_none=True, indent=2))

    cli_logger.notice(f"Published: https://{remote}@{push_result.digest}")

    return RegistryUpdate(
        entry=entry,
        published_at=resolve_published_at(push_result, clock),
        digest=push_result.digest,
    )


def publish_plan(
    plan: list[PublishPlanEntry],
    staging_dir: Path,
    repo_prefix: str,
    fetcher: SourceFetcher,
    publisher: ArtifactPublisher,
    *,
    dry_run: bool = False,
    clock: Clock = utcnow,
) -> list[RegistryUpdate]:
    """Publish every plan entry in order, stopping at the first failure."""
    return [
        publish_entry(
            entry,
            staging_dir,
            repo_prefix,
            fetcher,
            publisher,
            dry_run=dry_run,
            clock=clock,
        )
        for entry in plan
    ]


def _find_entry(index: RegistryIndex, handle: str, widget_id: str) -> RegistryEntry | None:
    for entry in index.widgets:
        if entry.handle == handle and entry.id == widget_id:
            return entry
    return None


def _log_entry(title: str, entry: RegistryEntry) -> None:
    with cli_logger.group(title):
        cli_logger.raw(entry.model_dump_json(by_alias=True, exclude_none=True, indent=2))


def apply_registry_updates(
    index: RegistryIndex,
    updates: list[RegistryUpdate],
    now: datetime,
) -> RegistryIndex:
    """Fold publish results into the registry index in place.

    New ``(handle, id)`` pairs get a fresh entry; existing entries take the
    latest descriptive fields and get the new release prepended. The widget
    list is sorted by ``(handle, id)`` afterwards.

    Args:
        index: Index to update.
        updates: Results in publish order.
        now: Generation time shared by the whole merge.

    Returns:
        The same index, updated.
    """
    index.api = REGISTRY_API_VERSION
    index.generated_at = format_timestamp(now)

    for update in updates:
        plan_entry = update.entry
        manifest = plan_entry.manifest
        label = f"{plan_entry.handle}/{plan_entry.id}"
        release = RegistryEntryRelease(
            version=plan_entry.widget.version,
            published_at=update.published_at,
            digest=update.digest,
        )

        entry = _find_entry(index, plan_entry.handle, plan_entry.id)
        if entry is None:
            entry = RegistryEntry(
                handle=plan_entry.handle,
                id=plan_entry.id,
                name=manifest.name,
                authors=list(manifest.authors),
                description=manifest.description,
                releases=[release],
            )
            index.widgets.append(entry)
            _log_entry(f"[{label}] Added new entry", entry)
            continue

        entry.name = manifest.name
        entry.authors = list(manifest.authors)
        entry.description = manifest.description
        entry.releases.insert(0, release)
        _log_entry(f"[{label}] Updated entry", entry)

    index.widgets.sort(key=lambda e: (e.handle, e.id))
    return index


def run_publish(
    config: PublishConfig,
    fetcher: SourceFetcher | None = None,
    publisher: ArtifactPublisher | None = None,
    clock: Clock = utcnow,
) -> PublishResult:
    """Run the whole pipeline described by *config*.

    Constructs the git and oras collaborators unless fakes are supplied.

    Returns:
        The updates applied and the written index.
    """
    plan = parse_publish_plan(config.plan_path)
    updates = publish_plan(
        plan,
        config.staging_dir,
        config.repo_prefix,
        fetcher or GitSourceFetcher(),
        publisher or OrasArtifactPublisher(),
        dry_run=config.dry_run,
        clock=clock,
    )

    now = clock()
    config.registry_dir.mkdir(parents=True, exist_ok=True)
    index = parse_registry_index(config.registry_dir, now=now)

    cli_logger.info("Updating registry index...")
    apply_registry_updates(index, updates, now)
    index_path = write_registry_index(config.registry_dir, index)
    cli_logger.success("Registry index updated")

    return PublishResult(updates=updates, index=index, index_path=index_path)
