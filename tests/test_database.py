"""
Tests for the SQLite catalog and its repositories.
"""

import pytest

from script_render_backend.models import ArtifactRef, Client, Project, ScriptType


class TestVersions:
    def test_versions_are_numbered_per_project(self, catalog, seeded):
        second = catalog.add_version(seeded["project"].id, "[0s - 5s]:\nSecond draft of the script.")

        assert seeded["version"].version_number == 1
        assert second.version_number == 2

    def test_content_is_stripped(self, catalog, seeded):
        version = catalog.add_version(seeded["project"].id, "\n\n  Some script text.  \n")
        assert catalog.versions.get(version.id).content == "Some script text."

    def test_unknown_project_raises(self, catalog):
        with pytest.raises(KeyError):
            catalog.add_version("missing", "text")

    def test_attach_artifact(self, catalog, seeded):
        ref = ArtifactRef(path="/pdfs/script-1.pdf", size_bytes=10)

        assert catalog.versions.attach_artifact(seeded["version"].id, ref) is True
        assert catalog.versions.get(seeded["version"].id).generated_pdf_url == "/pdfs/script-1.pdf"

    def test_attach_artifact_to_missing_version(self, catalog):
        ref = ArtifactRef(path="/pdfs/script-1.pdf", size_bytes=10)
        assert catalog.versions.attach_artifact("missing", ref) is False

    def test_missing_version_is_none(self, catalog):
        assert catalog.versions.get("missing") is None


class TestProjects:
    def test_project_loads_with_owner(self, catalog, seeded):
        project = catalog.projects.get(seeded["project"].id)

        assert project.title == "Spring Campaign"
        assert project.script_type == ScriptType.SOCIAL_MEDIA
        assert project.client_id == "client-1"
        assert project.owner.name == "Nimbus Studio"

    def test_project_without_owner(self, catalog):
        catalog.save_project(Project(id="solo", title="Solo", script_type=ScriptType.INTERNAL))
        assert catalog.projects.get("solo").owner is None

    def test_resaving_project_keeps_versions(self, catalog, seeded):
        """Updating a project must not drop its script versions."""
        catalog.save_project(seeded["project"].model_copy(update={"title": "Summer Campaign"}))

        assert catalog.projects.get(seeded["project"].id).title == "Summer Campaign"
        assert catalog.versions.get(seeded["version"].id) is not None

    def test_missing_project_is_none(self, catalog):
        assert catalog.projects.get("missing") is None


class TestClients:
    def test_client_round_trip(self, catalog):
        catalog.save_client(Client(id="c-2", name="Harbor Cafe", logo_url="/uploads/harbor.png"))
        client = catalog.clients.get("c-2")

        assert client.name == "Harbor Cafe"
        assert client.logo_url == "/uploads/harbor.png"

    def test_missing_client_is_none(self, catalog):
        assert catalog.clients.get("missing") is None
