"""
The render pipeline shared by queued and degraded execution.

Both the worker and the in-request fallback call ``RenderPipeline.run`` so that
a script renders to the same document whichever path handled it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol, TypeVar

from .errors import InvalidInput, RenderFailure, RenderServiceError
from .models import ArtifactRef, Client, Project, RenderInput, RenderRequest, ScriptVersion
from .renderer import DocumentRenderer
from .storage import ArtifactStore
from .utils import download_filename, epoch_millis, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[int], None]


class ProjectRepository(Protocol):
    def get(self, project_id: str) -> Optional[Project]:
        ...


class ClientRepository(Protocol):
    def get(self, client_id: str) -> Optional[Client]:
        ...


class VersionRepository(Protocol):
    def get(self, version_id: str) -> Optional[ScriptVersion]:
        ...

    def attach_artifact(self, version_id: str, ref: ArtifactRef) -> bool:
        ...


@dataclass(frozen=True)
class RenderedArtifact:
    data: bytes
    filename: str
    ref: ArtifactRef


def artifact_key(version_id: str, generated_at: datetime) -> str:
    """Storage key for a render of ``version_id`` at ``generated_at``."""
    return f"script-{version_id}-{epoch_millis(generated_at)}"


def _no_progress(_: int) -> None:
    return None


class RenderPipeline:
    """
    Resolves collaborator data, renders the document and stores the artifact.

    Attributes:
        renderer: Layout and PDF generation
        store: Where finished artifacts are written
        projects: Project lookups
        versions: Version lookups and artifact attachment
        clients: Client lookups
        clock: Source of the generation timestamp
    """

    def __init__(
        self,
        renderer: DocumentRenderer,
        store: ArtifactStore,
        projects: ProjectRepository,
        versions: VersionRepository,
        clients: ClientRepository,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.renderer = renderer
        self.store = store
        self.projects = projects
        self.versions = versions
        self.clients = clients
        self.clock = clock

    def _lookup(self, kind: str, fetch: Callable[[str], Optional[T]], record_id: str) -> Optional[T]:
        try:
            return fetch(record_id)
        except Exception as exc:  # noqa: BLE001
            raise RenderFailure(f"{kind} lookup failed for {record_id}: {exc}") from exc

    def resolve_input(self, request: RenderRequest) -> RenderInput:
        """
        Assemble the renderer input from the project, version and client records.

        Raises:
            InvalidInput: If a required record is missing
            RenderFailure: If a lookup itself fails
        """
        project = self._lookup("Project", self.projects.get, request.project_id)
        if project is None:
            raise InvalidInput(
                "Project not found.", details={"project_id": request.project_id}, status_code=404
            )

        version = self._lookup("Version", self.versions.get, request.version_id)
        if version is None:
            raise InvalidInput(
                "Script version not found.", details={"version_id": request.version_id}, status_code=404
            )
        if version.project_id != project.id:
            raise InvalidInput(
                "Script version does not belong to this project.",
                details={"project_id": project.id, "version_id": version.id},
            )

        if not project.client_id:
            raise InvalidInput(
                "Project has no client; a client is required to render a script.",
                details={"project_id": project.id},
            )
        client = self._lookup("Client", self.clients.get, project.client_id)
        if client is None:
            raise InvalidInput(
                "Client could not be loaded for this project.",
                details={"project_id": project.id, "client_id": project.client_id},
            )

        owner = project.owner
        owner_name = (owner.name or owner.email) if owner else None

        return RenderInput(
            project_title=project.title,
            script_type=project.script_type.value,
            client_name=client.name,
            client_logo_ref=client.logo_url,
            owner_name=owner_name or "Owner",
            owner_logo_ref=owner.logo_url if owner else None,
            version_number=version.version_number,
            content=version.content,
            generated_at=self.clock(),
        )

    def run(self, request: RenderRequest, report_progress: Optional[ProgressCallback] = None) -> RenderedArtifact:
        """
        Render ``request`` and persist the artifact.

        Progress is reported as 30 (input resolved), 50 (layout built),
        70 (document rendered) and 90 (artifact stored).

        Raises:
            InvalidInput: For missing records or content below the minimum length
            RenderFailure: For every other failure
        """
        report = report_progress or _no_progress
        try:
            render_input = self.resolve_input(request)
            report(30)
            layout = self.renderer.generate_layout(render_input)
            report(50)
            data = self.renderer.render_artifact(layout)
            report(70)
            ref = self.store.save(data, artifact_key(request.version_id, render_input.generated_at))
            self.versions.attach_artifact(request.version_id, ref)
            report(90)
        except RenderServiceError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise RenderFailure(f"Rendering failed for version {request.version_id}: {exc}") from exc

        logger.info(f"Version {request.version_id} rendered to {ref.path} ({ref.size_bytes} bytes)")
        return RenderedArtifact(
            data=data,
            filename=download_filename(render_input.project_title, render_input.version_number),
            ref=ref,
        )
