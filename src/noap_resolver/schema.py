"""Package metadata schema - the ``.package.json`` sidecar.

A package's own ``package.json`` is read as-is and enriched with the
resolution fields (``_source``, ``_target``, ``_release``, ``_resolution``,
``_direct``...). The sidecar written next to every materialized package is
the contract between cache entries, installed packages and the manager, so
field names and JSON shape must stay exactly as serialized here.
"""

import json
import logging
from pathlib import Path

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator

from . import semver

logger = logging.getLogger(__name__)

SIDECAR_FILE = ".package.json"
DECLARED_FILE = "package.json"


class PackageMeta(BaseModel):
    """
    Package metadata plus resolution bookkeeping.

    Unknown keys declared by the package are kept (``extra="allow"``) and written
    back untouched. Resolution fields are exposed under Python names and
    serialized under their underscore aliases.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    # Declared by the package itself
    name: str | None = None
    version: str | None = None
    main: str | None = None
    ignore: list[str] | None = None

    # Injected during resolution/installation
    source: str | None = Field(default=None, alias="_source")
    target: str | None = Field(default=None, alias="_target")
    release: str | None = Field(default=None, alias="_release")
    resolution: dict | None = Field(default=None, alias="_resolution")
    direct: bool | None = Field(default=None, alias="_direct")
    original_source: str | None = Field(default=None, alias="_originalSource")
    cache_headers: dict | None = Field(default=None, alias="_cacheHeaders")

    @field_validator("version", mode="before")
    @classmethod
    def _check_version(cls, value):
        if value is None or value == "":
            return None
        if not semver.valid(value):
            raise ValueError(f"Invalid semver version: {value!r}")
        return value

    @classmethod
    def from_dict(cls, data: dict) -> "PackageMeta":
        """Create from a JSON-decoded dictionary (underscore keys included)."""
        return cls.model_validate(data)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def copy_meta(self) -> "PackageMeta":
        return self.from_dict(self.to_dict())

    @property
    def resolution_type(self) -> str | None:
        return (self.resolution or {}).get("type")

    @classmethod
    def read(cls, directory: Path, filename: str = SIDECAR_FILE) -> "PackageMeta":
        """
        Load the metadata file of a materialized package.

        Args:
            directory: Package directory
            filename: Metadata file name (sidecar by default)

        Returns:
            PackageMeta instance

        Raises:
            FileNotFoundError: If the file doesn't exist
            json.JSONDecodeError: If the file is not valid JSON
            pydantic.ValidationError: If the JSON doesn't match the schema
        """
        return cls.from_dict(_load(Path(directory) / filename))

    @classmethod
    def read_declared(cls, directory: Path) -> "PackageMeta | None":
        """
        Read the package's own ``package.json``, or None when there is none.

        Packages are free to declare versions that are not semver; such a
        version is dropped, leaving the package addressable by target only.
        """
        path = Path(directory) / DECLARED_FILE
        try:
            data = _load(path)
        except FileNotFoundError:
            return None

        version = data.get("version")
        if version not in (None, "") and not (isinstance(version, str) and semver.valid(version)):
            logger.warning(f"Ignoring non-semver version {version!r} declared in {path}")
            del data["version"]
        return cls.from_dict(data)

    def write(self, directory: Path, filename: str = SIDECAR_FILE) -> Path:
        """Write metadata as pretty-printed JSON into ``directory``."""
        path = Path(directory) / filename
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        return path


def _load(path: Path) -> dict:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path.name} in {path.parent} is not a JSON object")
    return data
