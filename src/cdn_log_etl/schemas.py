# src/cdn_log_etl/schemas.py

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EntityKind(str, Enum):
    """What a CDN request path is attributed to."""

    MANIFEST_ID = "manifest_id"
    STREAM_ID = "stream_id"


# --- Checkpoint API ---


class CheckpointResponse(BaseModel):
    """Body of ``GET /api/cdn-data/region/{name}``."""

    model_config = ConfigDict(populate_by_name=True)

    file_name: str = Field("", alias="fileName")
    region: str = ""


# --- Export API ---


class ExportRecord(BaseModel):
    """Usage totals for one (entity kind, entity id, status) triple in a window."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    entity_kind: EntityKind
    unique_users: int = Field(..., ge=0)
    total_views: int = Field(..., ge=0)
    total_file_size: int = 0
    total_bytes_from_origin: int = 0
    total_bytes_to_client: int = 0
    http_status_class: str

    def to_api_dict(self) -> dict[str, Any]:
        """Wire form expected by the Livepeer ``/api/cdn-data`` endpoint."""
        is_manifest = self.entity_kind is EntityKind.MANIFEST_ID
        return {
            "stream_id": "" if is_manifest else self.entity_id,
            "playback_id": self.entity_id if is_manifest else "",
            "unique_users": self.unique_users,
            "count": self.total_views,
            "total_filesize": self.total_file_size,
            "total_cs_bytes": self.total_bytes_from_origin,
            "total_sc_bytes": self.total_bytes_to_client,
            "http_code": self.http_status_class,
        }


class ExportPayload(BaseModel):
    """
    Envelope for one hour of aggregated data. ``file_name`` is the last log
    object consumed for the hour; the API hands it back as the checkpoint.
    """

    date: int
    region: str
    file_name: str = ""
    data: list[ExportRecord] = Field(default_factory=list)

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "region": self.region,
            "fileName": self.file_name,
            "data": [record.to_api_dict() for record in self.data],
        }
