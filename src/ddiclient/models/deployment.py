"""Deployment descriptor models (deploymentBase and cancelAction replies)."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ddiclient.models.poll import Link
from ddiclient.models.status import HandlingType, MaintenanceWindow


class ArtifactHashes(BaseModel):
    """Declared digests; any subset of md5/sha1/sha256 may be present."""

    model_config = ConfigDict(extra="ignore")

    md5: Optional[str] = None
    sha1: Optional[str] = None
    sha256: Optional[str] = None

    def as_dict(self) -> dict[str, str]:
        return {name: value for name, value in self.model_dump().items() if value}


class ArtifactLinks(BaseModel):
    """Download links of an artifact.

    ``download`` is the secure (https) location, ``download-http`` the plain
    one. At least one of them must be present.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    download: Optional[Link] = None
    download_http: Optional[Link] = Field(None, alias="download-http")
    md5sum: Optional[Link] = None
    md5sum_http: Optional[Link] = Field(None, alias="md5sum-http")

    @model_validator(mode="after")
    def has_download_link(self) -> "ArtifactLinks":
        if self.download is None and self.download_http is None:
            raise ValueError("Missing field: download or download-http")
        return self


class Artifact(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    filename: str = Field(..., min_length=1)
    size: int = Field(..., ge=0, description="Expected size in bytes")
    hashes: ArtifactHashes = Field(default_factory=ArtifactHashes)
    links: ArtifactLinks = Field(..., alias="_links")

    @field_validator("filename")
    @classmethod
    def no_directory_traversal(cls, v: str) -> str:
        """Artifacts are written under the download dir by filename."""
        if "/" in v or "\\" in v or v in (".", ".."):
            raise ValueError(f"Artifact filename must be a plain file name: {v}")
        return v

    def download_locations(self, preferred_scheme: str = "https") -> list[str]:
        """Download URLs ordered by preference, without duplicates.

        Args:
            preferred_scheme: "https" puts the ``download`` link first,
                "http" puts ``download-http`` first
        """
        secure = self.links.download.href if self.links.download else None
        plain = self.links.download_http.href if self.links.download_http else None
        ordered = [secure, plain] if preferred_scheme == "https" else [plain, secure]
        locations: list[str] = []
        for url in ordered:
            if url and url not in locations:
                locations.append(url)
        return locations


class Metadata(BaseModel):
    key: str
    value: str


class Chunk(BaseModel):
    """Software module of a deployment, e.g. part="os", name="rootfs"."""

    model_config = ConfigDict(extra="ignore")

    part: str
    name: str
    version: str
    artifacts: list[Artifact] = Field(default_factory=list)
    metadata: list[Metadata] = Field(default_factory=list)

    @property
    def directory_name(self) -> str:
        """Chunk name usable as a single path component."""
        name = self.name.replace("/", "_").replace("\\", "_")
        return "_" if name in ("", ".", "..") else name


class Deployment(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    download: HandlingType = HandlingType.ATTEMPT
    update: HandlingType = HandlingType.ATTEMPT
    maintenance_window: Optional[MaintenanceWindow] = Field(None, alias="maintenanceWindow")
    chunks: list[Chunk] = Field(default_factory=list)


class ActionHistory(BaseModel):
    status: Optional[str] = None
    messages: list[str] = Field(default_factory=list)


class DeploymentDescriptor(BaseModel):
    """GET deploymentBase/<actionId> reply.

    Example:
        {
            "id": "42",
            "deployment": {
                "download": "forced",
                "update": "forced",
                "chunks": [{
                    "part": "os", "name": "rootfs", "version": "1.2.0",
                    "artifacts": [{
                        "filename": "rootfs.img",
                        "size": 1024,
                        "hashes": {"sha256": "..."},
                        "_links": {"download": {"href": "https://..."}}
                    }]
                }]
            }
        }
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    deployment: Deployment
    action_history: Optional[ActionHistory] = Field(None, alias="actionHistory")

    @model_validator(mode="before")
    @classmethod
    def stringify_id(cls, data):
        # Some servers send the action id as a number
        if isinstance(data, dict) and isinstance(data.get("id"), int):
            data = {**data, "id": str(data["id"])}
        return data

    @property
    def chunks(self) -> list[Chunk]:
        return self.deployment.chunks

    def artifact_count(self) -> int:
        return sum(len(chunk.artifacts) for chunk in self.chunks)

    def install_deferred(self) -> bool:
        """True when the server asks to hold installation for now."""
        return (
            self.deployment.update == HandlingType.SKIP
            or self.deployment.maintenance_window == MaintenanceWindow.UNAVAILABLE
        )


class CancelActionBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stop_id: str = Field(..., alias="stopId")


class CancelActionReply(BaseModel):
    """GET cancelAction/<id> reply: which action the server wants stopped."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    cancel_action: CancelActionBody = Field(..., alias="cancelAction")

    @model_validator(mode="before")
    @classmethod
    def stringify_ids(cls, data):
        if isinstance(data, dict):
            data = dict(data)
            if isinstance(data.get("id"), int):
                data["id"] = str(data["id"])
            body = data.get("cancelAction")
            if isinstance(body, dict) and isinstance(body.get("stopId"), int):
                data["cancelAction"] = {**body, "stopId": str(body["stopId"])}
        return data


class DownloadedArtifact(BaseModel):
    """An artifact fetched to local storage and verified against its hashes."""

    part: str
    chunk_name: str
    chunk_version: str
    filename: str
    path: Path
    size: int
    hashes: dict[str, str] = Field(default_factory=dict)
