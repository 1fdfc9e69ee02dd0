from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ConnectionKind = Literal["mysql", "postgres", "sqlite", "bigquery"]


class ConnectionSnapshot(BaseModel):
    """Credentials of the connection that was active when an agent run started.

    Frozen: a run keeps acting on the database it was started against even if
    the user switches connections afterwards.
    """

    model_config = ConfigDict(frozen=True)

    kind: ConnectionKind
    host: str = ""
    port: str = ""
    user: str = ""
    password: str = Field(default="", repr=False)
    db_name: str = ""
    use_tls: bool = False
    file_path: str = ""
    project_id: str = ""
    location: str = ""

    def describe(self) -> str:
        """One-line, credential-free summary for prompts and logs."""
        if self.kind in ("mysql", "postgres"):
            return f"{self.kind} {self.user}@{self.host}:{self.port}/{self.db_name}"
        if self.kind == "sqlite":
            return f"sqlite file={self.file_path}"
        location = f" location={self.location}" if self.location else ""
        return f"bigquery project={self.project_id}{location}"


def snapshot_connection(details: ConnectionSnapshot | None) -> ConnectionSnapshot | None:
    """Deep-copy ``details`` so later edits to the source cannot leak into a run."""
    if details is None:
        return None
    return details.model_copy(deep=True)
