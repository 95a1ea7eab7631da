"""Deployment manifest model and loader.

A bundle directory ships a ``deployment-manifest.yml`` listing the items to
install. The installer only reads manifests; fetching bundles is the job of
the source adapters.
"""

import json
from pathlib import Path
from typing import Any

import anyio
import pydantic
import structlog
import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from bundle_registry.core.constants import MANIFEST_FILENAMES
from bundle_registry.core.errors import ValidationError

logger = structlog.get_logger(__name__)


class ManifestItem(BaseModel):
    """One installable item.

    Attributes:
        id: Item identifier, used as the target file or directory name
        file: Path of the item inside the bundle directory
        type: Item type (prompt, instructions, agent, chatmode, skill)
        tags: Free-form tags, used to infer ``type`` when it is missing
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    file: str
    type: str | None = None
    name: str | None = None
    tags: list[str] = Field(default_factory=list)

    @field_validator("id", "file")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def tags_default(cls, value: Any) -> Any:
        return [] if value is None else value


class DeploymentManifest(BaseModel):
    """Declarative list of what a bundle installs.

    Older bundles list their items under ``prompts``; both keys are accepted.
    """

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    version: str | None = None
    name: str | None = None
    items: list[ManifestItem] = Field(
        default_factory=list, validation_alias=AliasChoices("items", "prompts")
    )

    @field_validator("items", mode="before")
    @classmethod
    def items_default(cls, value: Any) -> Any:
        return [] if value is None else value


def find_manifest(bundle_path: Path) -> Path | None:
    """Return the first manifest file present in ``bundle_path``."""
    for filename in MANIFEST_FILENAMES:
        candidate = bundle_path / filename
        if candidate.is_file():
            return candidate
    return None


def parse_manifest(content: str, *, source: str = "<manifest>") -> DeploymentManifest:
    """Parse manifest text (YAML or JSON).

    Raises:
        ValidationError: If the text is not a valid manifest
    """
    try:
        if source.endswith(".json"):
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except (yaml.YAMLError, ValueError) as exc:
        raise ValidationError("manifest", f"{source} could not be parsed: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("manifest", f"{source} must contain a mapping")

    try:
        return DeploymentManifest.model_validate(data)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ValidationError("manifest", f"{source} {location}: {first['msg']}") from exc


async def load_manifest(bundle_path: Path) -> DeploymentManifest | None:
    """Load the deployment manifest of a bundle directory.

    Returns:
        The manifest, or None if the bundle has no manifest file

    Raises:
        ValidationError: If the manifest exists but is malformed
    """
    manifest_path = find_manifest(bundle_path)
    if manifest_path is None:
        return None

    content = await anyio.Path(manifest_path).read_text(encoding="utf-8")
    manifest = parse_manifest(content, source=manifest_path.name)
    logger.debug(
        "manifest.loaded", path=str(manifest_path), items=len(manifest.items)
    )
    return manifest
