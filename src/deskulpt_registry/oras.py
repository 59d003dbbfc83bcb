"""OCI artifact push via the oras CLI.

Packages a staged widget directory as a single artifact tagged
``v<manifest version>`` and annotated with the pre-defined OCI annotation keys:
https://specs.opencontainers.org/image-spec/annotations/#pre-defined-annotation-keys
"""

import json
import os
import subprocess
from pathlib import Path

from deskulpt_registry import exit_codes
from deskulpt_registry.errors import PublishError
from deskulpt_registry.schema import OrasPushOutput, Widget, WidgetManifest, parse_oras_push_output

# Environment variable overriding the oras executable
ORAS_CLI_ENV = "ORAS_CLI"
DEFAULT_ORAS_CLI = "oras"

ARTIFACT_TYPE = "application/vnd.deskulpt.widget.v1"
ANNOTATION_PREFIX = "org.opencontainers.image."
CREATED_ANNOTATION = f"{ANNOTATION_PREFIX}created"
VENDOR = "Deskulpt"


class ArtifactPushError(PublishError):
    """Raised when oras exits with a failure."""

    exit_code = exit_codes.PUSH_ERROR


def get_oras_cli() -> str:
    """Return the oras executable, honouring the ORAS_CLI override."""
    return os.environ.get(ORAS_CLI_ENV, DEFAULT_ORAS_CLI)


def standard_annotations(widget: Widget, manifest: WidgetManifest) -> dict[str, str | None]:
    """Build the OCI annotations for a widget, keyed without prefix.

    ``created`` is left unset; oras stamps the push time.
    """
    authors = [
        author if isinstance(author, str) else author.model_dump(exclude_none=True)
        for author in manifest.authors
    ]
    return {
        "created": None,
        "authors": json.dumps(authors, separators=(",", ":"), ensure_ascii=False),
        "url": manifest.homepage,
        "source": f"{widget.repo}@{widget.commit}",
        "version": widget.version,
        "revision": widget.commit,
        "vendor": VENDOR,
        "licenses": manifest.license,
        "title": manifest.name,
        "description": manifest.description,
    }


def build_push_args(
    dst: str,
    widget: Widget,
    manifest: WidgetManifest,
    dry_run: bool = False,
) -> list[str]:
    """Build the ``oras push`` argument list (without the executable).

    Args:
        dst: Artifact repository reference, without tag.
        widget: Pinned source of the widget.
        manifest: Widget manifest; its version becomes the tag.
        dry_run: Push to a local OCI image layout instead of a registry.

    Returns:
        Arguments to pass to oras.
    """
    args = ["push", "--artifact-type", ARTIFACT_TYPE]

    if dry_run:
        args.append("--oci-layout")

    for key, value in standard_annotations(widget, manifest).items():
        if value is not None:
            args.extend(["--annotation", f"{ANNOTATION_PREFIX}{key}={value}"])

    # Run from the source directory so everything in it is packaged
    args.extend([f"{dst}:v{manifest.version}", "./", "--no-tty", "--format", "json"])
    return args


def push(
    src: Path,
    dst: str,
    widget: Widget,
    manifest: WidgetManifest,
    dry_run: bool = False,
) -> OrasPushOutput:
    """Push the contents of *src* as a widget artifact.

    Args:
        src: Directory whose contents form the artifact.
        dst: Artifact repository reference, without tag.
        widget: Pinned source of the widget.
        manifest: Widget manifest.
        dry_run: Push to a local OCI image layout instead of a registry.

    Returns:
        The validated descriptor reported by oras.

    Raises:
        ArtifactPushError: If oras cannot be run or exits non-zero.
        SchemaValidationError: If oras prints an unexpected result.
    """
    cmd = [get_oras_cli(), *build_push_args(dst, widget, manifest, dry_run=dry_run)]

    try:
        result = subprocess.run(
            cmd,
            cwd=src,
            check=True,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as e:
        msg = f"oras executable not found: {cmd[0]}"
        raise ArtifactPushError(msg) from e
    except subprocess.CalledProcessError as e:
        msg = f"Failed to push {dst}:v{manifest.version} (exit code {e.returncode}): {e.stderr.strip()}"
        raise ArtifactPushError(msg) from e

    return parse_oras_push_output(result.stdout)
