"""Git operations for the publish pipeline.

Stages widget sources at a pinned commit and reads single files from the
registry repository history. Nothing here touches a working tree other than
the target directory it is given.
"""

import shutil
import subprocess
from pathlib import Path

from deskulpt_registry import exit_codes
from deskulpt_registry.errors import PublishError


class GitCheckoutError(PublishError):
    """Raised when a repository, commit or path cannot be resolved."""

    exit_code = exit_codes.GIT_ERROR


def is_git_available() -> bool:
    """Check if git command is available on the system.

    Returns:
        True if git is available, False otherwise.
    """
    try:
        subprocess.run(
            ["git", "--version"],
            capture_output=True,
            check=True,
        )
        return True
    except FileNotFoundError:
        return False


def sparse_clone(url: str, clone_dir: Path, ref: str) -> None:
    """Clone a repo at a specific ref with blob filtering and sparse checkout enabled.

    Clones with --filter=blob:none (fetches commit graph but no file content),
    then checks out the requested ref before any sparse_checkout materializes blobs.

    Args:
        url: Git URL to clone.
        clone_dir: Target directory for the clone. Must be absent or empty.
        ref: Commit hash to check out after cloning.

    Raises:
        subprocess.CalledProcessError: If git clone or checkout fails.
    """
    subprocess.run(
        ["git", "clone", "--quiet", "--filter=blob:none", "--sparse", url, str(clone_dir)],
        check=True,
        capture_output=True,
    )
    subprocess.run(
        ["git", "-c", "advice.detachedHead=false", "checkout", "--quiet", ref],
        cwd=clone_dir,
        check=True,
        capture_output=True,
    )


def sparse_checkout(clone_dir: Path, patterns: list[str]) -> None:
    """Set sparse-checkout patterns in non-cone mode.

    Args:
        clone_dir: Path to the cloned repo.
        patterns: Sparse checkout patterns (e.g. ["/widgets/clock/"]).

    Raises:
        subprocess.CalledProcessError: If git sparse-checkout fails.
    """
    subprocess.run(
        ["git", "sparse-checkout", "set", "--no-cone", *patterns],
        cwd=clone_dir,
        check=True,
        capture_output=True,
    )


def sparse_checkout_disable(clone_dir: Path) -> None:
    """Materialize the full tree of a sparse clone.

    Raises:
        subprocess.CalledProcessError: If git sparse-checkout fails.
    """
    subprocess.run(
        ["git", "sparse-checkout", "disable"],
        cwd=clone_dir,
        check=True,
        capture_output=True,
    )


def _is_inside(base: Path, path: Path) -> bool:
    return path.resolve().is_relative_to(base.resolve())


def checkout_repo_at_commit(
    target_dir: Path,
    repo: str,
    commit: str,
    path: str | None = None,
) -> None:
    """Populate *target_dir* with the tree of *repo* at *commit*.

    When *path* is given only that subdirectory is materialized. The ``.git``
    directory is removed afterwards so the target holds source files only.

    Args:
        target_dir: Directory to populate. Must be absent or empty.
        repo: Git URL of the source repository.
        commit: Commit hash to check out.
        path: Optional subdirectory to restrict the checkout to.

    Raises:
        GitCheckoutError: If the repo, commit or path cannot be resolved.
    """
    if path is not None and not _is_inside(target_dir, target_dir / path):
        msg = f"Path '{path}' is outside the checkout of {repo}@{commit}"
        raise GitCheckoutError(msg)

    try:
        sparse_clone(repo, target_dir, commit)
        if path is None:
            sparse_checkout_disable(target_dir)
        else:
            sparse_checkout(target_dir, [f"/{path.strip('/')}/"])
    except subprocess.CalledProcessError as e:
        msg = f"Failed to check out {repo}@{commit}: {e.stderr.decode().strip()}"
        raise GitCheckoutError(msg) from e

    if path is not None:
        widget_dir = target_dir / path
        if not widget_dir.is_dir():
            msg = f"Path '{path}' does not exist in {repo}@{commit}"
            raise GitCheckoutError(msg)
        # Symlinks in the repository may point elsewhere
        if not _is_inside(target_dir, widget_dir):
            msg = f"Path '{path}' is outside the checkout of {repo}@{commit}"
            raise GitCheckoutError(msg)

    shutil.rmtree(target_dir / ".git")


def show_file_at_commit(file: str, commit: str, cwd: Path | None = None) -> str:
    """Read a file's contents at a commit without checking it out.

    Args:
        file: Repository-relative path (forward slashes).
        commit: Commit hash or any revision git understands.
        cwd: Repository to read from. Defaults to the current directory.

    Returns:
        The file contents.

    Raises:
        GitCheckoutError: If the commit or file does not exist.
    """
    try:
        result = subprocess.run(
            ["git", "show", f"{commit}:{file}"],
            cwd=cwd,
            check=True,
            capture_output=True,
            text=True,
        )
    except subprocess.CalledProcessError as e:
        msg = f"Failed to read '{file}' at {commit}: {e.stderr.strip()}"
        raise GitCheckoutError(msg) from e
    return result.stdout


def file_exists_at_commit(file: str, commit: str, cwd: Path | None = None) -> bool:
    """Check whether a file exists at a commit.

    Args:
        file: Repository-relative path (forward slashes).
        commit: Commit hash or any revision git understands.
        cwd: Repository to read from. Defaults to the current directory.

    Returns:
        True if the path names an object at that commit, False otherwise.
    """
    result = subprocess.run(
        ["git", "cat-file", "-e", f"{commit}:{file}"],
        cwd=cwd,
        capture_output=True,
    )
    return result.returncode == 0
