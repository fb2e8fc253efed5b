"""Image repository index and image metadata records."""

import json
from pathlib import Path
from typing import Any, Dict, List

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from tapcon_monitor.utils import get_logger
from tapcon_monitor.utils.exceptions import ImageLoadError

logger = get_logger(__name__)

REPOSITORIES_KEY = "Repositories"


class ImageSource(BaseModel):
    """Where an image was built from."""

    model_config = ConfigDict(extra="ignore")

    repo: str = Field(default="", validation_alias=AliasChoices("repo", "Repo"))
    revision: str = Field(default="", validation_alias=AliasChoices("revision", "Revision"))


class ImageMetadata(BaseModel):
    """Subset of an image's metadata document used for provenance facts."""

    model_config = ConfigDict(extra="ignore")

    source: ImageSource = Field(
        default_factory=ImageSource, validation_alias=AliasChoices("source", "Source")
    )

    @field_validator("source", mode="before")
    @classmethod
    def _nullable_source(cls, value: Any) -> Any:
        return {} if value is None else value


def parse_image_reference(reference: str) -> str:
    """
    Extract the content hash from a ``sha256:<id>`` reference.

    Raises:
        ValueError: If the reference has no digest prefix
    """
    parts = reference.split(":")
    if len(parts) < 2:
        raise ValueError(f"invalid canonical version {reference}")
    return parts[1]


def load_repository_index(path: Path) -> Dict[str, Dict[str, str]]:
    """
    Load the repository index file.

    Returns:
        Mapping of repository name to {reference: "sha256:<id>"}

    Raises:
        ImageLoadError: If the file cannot be read or parsed
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ImageLoadError(str(path), str(e)) from e
    except json.JSONDecodeError as e:
        raise ImageLoadError(str(path), f"invalid JSON: {e}") from e

    repositories = data.get(REPOSITORIES_KEY) if isinstance(data, dict) else None
    if repositories is None:
        return {}
    if not isinstance(repositories, dict):
        raise ImageLoadError(str(path), f"{REPOSITORIES_KEY} is not an object")
    return repositories


def image_ids(repositories: Dict[str, Dict[str, str]]) -> List[str]:
    """All distinct image content hashes referenced by the index, in index order."""
    result: List[str] = []
    for repo, versions in repositories.items():
        for reference in (versions or {}).values():
            try:
                image_id = parse_image_reference(reference)
            except ValueError as e:
                logger.warning("Skipping image reference", extra={"repo": repo, "error": str(e)})
                continue
            if image_id not in result:
                result.append(image_id)
    return result


def load_image_metadata(content_root: Path, image_id: str) -> ImageMetadata:
    """
    Load an image's metadata document from the content-addressed store.

    Raises:
        ImageLoadError: If the document is missing or malformed
    """
    path = content_root / image_id
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return ImageMetadata.model_validate(data)
    except OSError as e:
        raise ImageLoadError(str(path), str(e)) from e
    except (json.JSONDecodeError, ValidationError) as e:
        raise ImageLoadError(str(path), str(e)) from e
