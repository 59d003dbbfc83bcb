"""Schema definitions for the publish pipeline using Pydantic.

Every value that crosses a boundary (publish plan, widget manifest, oras
output, registry index) is validated here before use. Validation fails closed:
a malformed value raises ``SchemaValidationError`` naming the offending field
instead of being coerced or defaulted.

JSON documents use camelCase keys; the models expose snake_case attributes
and serialize back by alias.
"""

import base64
import binascii
import json
import re
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Annotated, Any, TypeVar

from pydantic import (
    AfterValidator,
    AnyUrl,
    AwareDatetime,
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    TypeAdapter,
    ValidationError,
    model_validator,
)

from deskulpt_registry import exit_codes
from deskulpt_registry.errors import PublishError, format_validation_errors

# Registry index API version written on every update
REGISTRY_API_VERSION = 1

WIDGET_MANIFEST_FILE = "deskulpt.widget.json"
REGISTRY_INDEX_FILE = "index.json"

# Canonical grammar from the FAQ of https://semver.org/
SEMVER_PATTERN = re.compile(
    r"(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?",
    re.ASCII,
)

# IDs end up as path and URL segments
SAFE_ID_PATTERN = re.compile(r"[a-zA-Z0-9\-_]+", re.ASCII)

# SHA-1 or SHA-256 object name
COMMIT_PATTERN = re.compile(r"[0-9a-fA-F]{40}|[0-9a-fA-F]{64}", re.ASCII)

EMAIL_PATTERN = re.compile(
    r"(?!\.)(?!.*\.\.)[A-Za-z0-9_'+\-.]*[A-Za-z0-9_+-]@([A-Za-z0-9][A-Za-z0-9\-]*\.)+[A-Za-z]{2,}",
    re.ASCII,
)

# Date and time of day; the datetime adapter checks the rest
ISO_DATETIME_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}", re.ASCII)

_URL_ADAPTER = TypeAdapter(AnyUrl)
_DATETIME_ADAPTER = TypeAdapter(AwareDatetime)

ModelT = TypeVar("ModelT", bound=BaseModel)


class SchemaValidationError(PublishError, ValueError):
    """Raised when a value does not conform to its schema."""

    exit_code = exit_codes.VALIDATION_ERROR


def utcnow() -> datetime:
    """Current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as ``YYYY-MM-DDTHH:MM:SS.sssZ`` in UTC."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _validate_semver(value: str) -> str:
    if not SEMVER_PATTERN.fullmatch(value):
        msg = f"'{value}' is not a valid semantic version (expected MAJOR.MINOR.PATCH)"
        raise ValueError(msg)
    return value


def _validate_safe_id(value: str) -> str:
    if not SAFE_ID_PATTERN.fullmatch(value):
        msg = f"'{value}' may only contain letters, digits, hyphens and underscores"
        raise ValueError(msg)
    return value


def _validate_commit(value: str) -> str:
    if not COMMIT_PATTERN.fullmatch(value):
        msg = f"'{value}' is not a 40-character (SHA-1) or 64-character (SHA-256) hex hash"
        raise ValueError(msg)
    return value


def _validate_url(value: str) -> str:
    # Validate only; the original string is kept so it round-trips unchanged
    try:
        _URL_ADAPTER.validate_python(value)
    except ValidationError:
        msg = f"'{value}' is not a valid URL"
        raise ValueError(msg) from None
    return value


def _validate_email(value: str) -> str:
    if not EMAIL_PATTERN.fullmatch(value):
        msg = f"'{value}' is not a valid email address"
        raise ValueError(msg)
    return value


def _validate_subdirectory(value: str) -> str:
    parts = PurePosixPath(value).parts
    if not parts or value.startswith("/") or "\\" in value or ".." in parts:
        msg = f"'{value}' must be a relative path inside the repository"
        raise ValueError(msg)
    return value


def _validate_base64(value: str) -> str:
    try:
        base64.b64decode(value, validate=True)
    except binascii.Error:
        msg = "not valid base64 data"
        raise ValueError(msg) from None
    return value


def _validate_timestamp(value: str) -> str:
    # Validate only; the original string is kept so stored releases never change
    msg = f"'{value}' is not an ISO-8601 datetime with timezone"
    if not ISO_DATETIME_PATTERN.match(value):
        raise ValueError(msg)
    try:
        _DATETIME_ADAPTER.validate_python(value)
    except ValidationError:
        raise ValueError(msg) from None
    return value


SemVer = Annotated[str, AfterValidator(_validate_semver)]
SafeId = Annotated[str, AfterValidator(_validate_safe_id)]
CommitHash = Annotated[str, AfterValidator(_validate_commit)]
Url = Annotated[str, AfterValidator(_validate_url)]
Email = Annotated[str, AfterValidator(_validate_email)]
Base64Data = Annotated[str, AfterValidator(_validate_base64)]
Subdirectory = Annotated[str, AfterValidator(_validate_subdirectory)]
Timestamp = Annotated[str, AfterValidator(_validate_timestamp)]


class CamelModel(BaseModel):
    """Base model for documents whose JSON keys are camelCase."""

    model_config = ConfigDict(populate_by_name=True)


class Widget(BaseModel):
    """A widget source snapshot pinned to a commit."""

    version: SemVer = Field(description="Semantic version of the widget")
    repo: Url = Field(description="Git URL of the source repository")
    commit: CommitHash = Field(description="Pinned commit hash")
    path: Subdirectory | None = Field(
        default=None,
        description="Subdirectory of the repository holding the widget, POSIX-style",
    )


class AuthorInfo(BaseModel):
    """Structured widget author."""

    name: str = Field(description="Author name")
    email: Email | None = Field(default=None, description="Contact email")
    url: Url | None = Field(default=None, description="Author website")


# An author is either a bare name or a structured record
WidgetManifestAuthor = str | AuthorInfo


class WidgetManifest(BaseModel):
    """Publishable subset of ``deskulpt.widget.json``.

    Only the fields the registry needs are kept; anything else in the file is
    ignored. Validation is stricter than what the runtime accepts because
    these values end up in public annotations and the index.
    """

    name: str = Field(max_length=80, description="Display name")
    version: SemVer = Field(description="Semantic version, used as the artifact tag")
    authors: list[WidgetManifestAuthor] = Field(min_length=1, description="Widget authors")
    license: str = Field(description="License identifier")
    description: str = Field(max_length=160, description="One-line description")
    homepage: Url = Field(description="Homepage URL")


class PublishPlanEntry(BaseModel):
    """One unit of publish work."""

    handle: str = Field(description="Publisher handle the widget is published under")
    id: SafeId = Field(description="Widget identifier, unique per handle")
    widget: Widget
    manifest: WidgetManifest


class OrasPushOutput(CamelModel):
    """Descriptor printed by ``oras push --format json``."""

    media_type: str = Field(alias="mediaType")
    digest: str
    size: StrictInt
    urls: list[str] | None = None
    annotations: dict[str, str] | None = None
    data: Base64Data | None = None
    platform: dict[str, Any] | None = None
    artifact_type: str | None = Field(default=None, alias="artifactType")
    reference: str
    reference_as_tags: list[str] = Field(alias="referenceAsTags")


class RegistryEntryRelease(CamelModel):
    """A single immutable release of a widget."""

    version: str
    published_at: Timestamp = Field(alias="publishedAt")
    digest: str


class RegistryEntry(BaseModel):
    """Registry index entry, keyed by ``(handle, id)``.

    Descriptive fields mirror the latest publish; ``releases`` is ordered
    newest first.
    """

    handle: str
    id: str
    name: str
    authors: list[WidgetManifestAuthor] = Field(min_length=1)
    description: str
    releases: list[RegistryEntryRelease] = Field(min_length=1)


class RegistryIndex(CamelModel):
    """Root schema for the registry ``index.json``."""

    api: StrictInt = Field(description="Index API version")
    generated_at: Timestamp = Field(alias="generatedAt")
    widgets: list[RegistryEntry] = Field(description="Published widgets sorted by (handle, id)")

    @classmethod
    def empty(cls, now: datetime | None = None) -> "RegistryIndex":
        """Create an index with no widgets."""
        return cls(api=REGISTRY_API_VERSION, generated_at=format_timestamp(now or utcnow()), widgets=[])


class Publisher(CamelModel):
    """Publisher declaration (``publishers/<handle>.yaml``) in the registry repo."""

    organization: StrictInt | None = Field(default=None, description="GitHub organization ID")
    user: StrictInt | None = Field(default=None, description="GitHub user ID")
    extra_maintainers: list[StrictInt] | None = Field(
        default=None,
        alias="extraMaintainers",
        description="Additional GitHub user IDs allowed to publish",
    )

    @model_validator(mode="after")
    def validate_single_owner(self) -> "Publisher":
        """Validate that exactly one of organization or user is provided."""
        if (self.organization is None) == (self.user is None):
            msg = "Exactly one of organization or user should be provided"
            raise ValueError(msg)
        return self


# Widget declarations (``widgets/<handle>.yaml``): widget ID -> pinned source
WidgetsDeclaration = dict[SafeId, Widget]
_WIDGETS_ADAPTER = TypeAdapter(WidgetsDeclaration)
_TIMESTAMP_ADAPTER = TypeAdapter(Timestamp)


def validate_model(model: type[ModelT], data: Any, source: str) -> ModelT:
    """Validate *data* against *model*, naming *source* in the error.

    Raises:
        SchemaValidationError: If validation fails.
    """
    try:
        return model.model_validate(data)
    except ValidationError as e:
        msg = f"Invalid {source}: {format_validation_errors(e)}"
        raise SchemaValidationError(msg) from e


def validate_widgets(data: Any, source: str) -> WidgetsDeclaration:
    """Validate a widgets declaration mapping.

    Raises:
        SchemaValidationError: If validation fails.
    """
    try:
        return _WIDGETS_ADAPTER.validate_python(data)
    except ValidationError as e:
        msg = f"Invalid {source}: {format_validation_errors(e)}"
        raise SchemaValidationError(msg) from e


def validate_timestamp(value: str, source: str) -> str:
    """Check that *value* is an ISO-8601 datetime with timezone and return it unchanged.

    Raises:
        SchemaValidationError: If *value* is not an aware ISO-8601 datetime.
    """
    try:
        return _TIMESTAMP_ADAPTER.validate_python(value)
    except ValidationError as e:
        msg = f"Invalid {source}: {format_validation_errors(e)}"
        raise SchemaValidationError(msg) from e


def _load_json(content: str, source: str) -> Any:
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        msg = f"Invalid {source}: malformed JSON ({e.msg} at line {e.lineno} column {e.colno})"
        raise SchemaValidationError(msg) from e


def parse_publish_plan(plan_path: Path) -> list[PublishPlanEntry]:
    """Load and validate a newline-delimited JSON publish plan.

    Blank lines are skipped; order is preserved.

    Args:
        plan_path: Path to the plan file.

    Returns:
        Validated plan entries in file order.

    Raises:
        FileNotFoundError: If the plan file does not exist.
        SchemaValidationError: If any line is malformed or invalid.
    """
    content = plan_path.read_text(encoding="utf-8")
    entries: list[PublishPlanEntry] = []

    for lineno, line in enumerate(content.split("\n"), start=1):
        line = line.strip()
        if not line:
            continue
        source = f"publish plan '{plan_path}' (line {lineno})"
        entries.append(validate_model(PublishPlanEntry, _load_json(line, source), source))

    return entries


def parse_widget_manifest(widget_dir: Path) -> WidgetManifest:
    """Load and validate ``deskulpt.widget.json`` from a widget directory.

    Raises:
        FileNotFoundError: If the manifest file does not exist.
        SchemaValidationError: If the manifest is malformed or invalid.
    """
    manifest_path = widget_dir / WIDGET_MANIFEST_FILE
    if not manifest_path.exists():
        msg = f"{WIDGET_MANIFEST_FILE} not found at {manifest_path}"
        raise FileNotFoundError(msg)

    source = f"widget manifest '{manifest_path}'"
    data = _load_json(manifest_path.read_text(encoding="utf-8"), source)
    return validate_model(WidgetManifest, data, source)


def parse_oras_push_output(output: str) -> OrasPushOutput:
    """Validate the JSON descriptor printed by ``oras push``.

    Raises:
        SchemaValidationError: If the output is not valid JSON or does not match.
    """
    source = "oras push output"
    return validate_model(OrasPushOutput, _load_json(output, source), source)


def parse_registry_index(registry_dir: Path, now: datetime | None = None) -> RegistryIndex:
    """Load and validate ``index.json`` from the registry directory.

    A missing index is not an error: the first publish starts from an empty
    index generated at *now*.

    Raises:
        SchemaValidationError: If the index is malformed or invalid.
    """
    index_path = registry_dir / REGISTRY_INDEX_FILE
    if not index_path.exists():
        return RegistryIndex.empty(now)

    source = f"registry index '{index_path}'"
    data = _load_json(index_path.read_text(encoding="utf-8"), source)
    return validate_model(RegistryIndex, data, source)


def write_registry_index(registry_dir: Path, index: RegistryIndex) -> Path:
    """Serialize the index to ``index.json``, replacing the whole file.

    Returns:
        Path of the written file.
    """
    index_path = registry_dir / REGISTRY_INDEX_FILE
    data = index.model_dump(mode="json", by_alias=True, exclude_none=True)
    index_path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return index_path
