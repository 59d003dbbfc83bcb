"""Registry repository declarations read from git history.

Publishers and their widgets are declared as YAML files in the registry
repository (``publishers/<handle>.yaml`` and ``widgets/<handle>.yaml``).
These helpers read a declaration as of a given commit, so a change can be
checked against exactly what was merged.
"""

from pathlib import Path, PurePosixPath

import yaml

from deskulpt_registry.git import file_exists_at_commit, show_file_at_commit
from deskulpt_registry.schema import Publisher, WidgetsDeclaration, validate_model, validate_widgets

PUBLISHERS_DIR = "publishers"
WIDGETS_DIR = "widgets"


def _declaration_path(directory: str, handle: str) -> str:
    return str(PurePosixPath(directory) / f"{handle}.yaml")


def parse_publisher(handle: str, commit: str, cwd: Path | None = None) -> Publisher | None:
    """Load a publisher declaration at *commit*.

    Returns:
        The validated publisher, or None if the handle has no declaration.

    Raises:
        GitCheckoutError: If the file exists but cannot be read.
        SchemaValidationError: If the declaration is invalid.
    """
    entry_file = _declaration_path(PUBLISHERS_DIR, handle)
    if not file_exists_at_commit(entry_file, commit, cwd=cwd):
        return None

    data = yaml.safe_load(show_file_at_commit(entry_file, commit, cwd=cwd))
    return validate_model(Publisher, data, f"publisher '{entry_file}' at {commit}")


def parse_widgets(handle: str, commit: str, cwd: Path | None = None) -> WidgetsDeclaration | None:
    """Load the widget declarations of a publisher at *commit*.

    Returns:
        Mapping of widget ID to pinned source, or None if the handle
        declares no widgets.

    Raises:
        GitCheckoutError: If the file exists but cannot be read.
        SchemaValidationError: If the declaration is invalid.
    """
    entry_file = _declaration_path(WIDGETS_DIR, handle)
    if not file_exists_at_commit(entry_file, commit, cwd=cwd):
        return None

    data = yaml.safe_load(show_file_at_commit(entry_file, commit, cwd=cwd))
    return validate_widgets(data, f"widgets '{entry_file}' at {commit}")
