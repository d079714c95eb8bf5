"""
SQLite catalog of owners, clients, projects and script versions.

The render pipeline only reads from this catalog (and records the generated
artifact on the version), so it is kept deliberately small. The same database
file can be shared by several processes: the API and standalone workers.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Optional
from uuid import uuid4

from .models import ArtifactRef, Client, Owner, Project, ScriptType, ScriptVersion


DEFAULT_DB_PATH = Path("data/catalog.db")


def _ensure_db_dir(db_path: Path) -> None:
    """Ensure the database directory exists."""
    db_path.parent.mkdir(parents=True, exist_ok=True)


class CatalogDatabase:
    """
    SQLite database for the render collaborators.

    Thread-safe: every operation opens its own connection and SQLite handles
    concurrent access with WAL mode.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = db_path
        _ensure_db_dir(db_path)
        self._init_db()
        self.projects = ProjectRepository(self)
        self.clients = ClientRepository(self)
        self.versions = VersionRepository(self)

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper settings."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS owners (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT,
                    logo_url TEXT
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS clients (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    logo_url TEXT
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    script_type TEXT NOT NULL,
                    client_id TEXT,
                    owner_id TEXT REFERENCES owners(id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS script_versions (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
                    version_number INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    generated_pdf_url TEXT
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_versions_project
                ON script_versions(project_id, version_number DESC)
            """)

    def save_owner(self, owner: Owner) -> Owner:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO owners (id, name, email, logo_url) VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET name = excluded.name, email = excluded.email, logo_url = excluded.logo_url
                """,
                (owner.id, owner.name, owner.email, owner.logo_url),
            )
        return owner

    def save_client(self, client: Client) -> Client:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO clients (id, name, logo_url) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET name = excluded.name, logo_url = excluded.logo_url
                """,
                (client.id, client.name, client.logo_url),
            )
        return client

    def save_project(self, project: Project) -> Project:
        """
        Save or update a project. The owner, if any, is saved as well.
        """
        if project.owner is not None:
            self.save_owner(project.owner)
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO projects (id, title, script_type, client_id, owner_id)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    script_type = excluded.script_type,
                    client_id = excluded.client_id,
                    owner_id = excluded.owner_id
                """,
                (
                    project.id,
                    project.title,
                    project.script_type.value,
                    project.client_id,
                    project.owner.id if project.owner else None,
                ),
            )
        return project

    def add_version(self, project_id: str, content: str) -> ScriptVersion:
        """
        Create the next version of a project's script.

        Args:
            project_id: The project the version belongs to
            content: Script text; surrounding whitespace is stripped

        Returns:
            The stored version, numbered one above the current highest

        Raises:
            KeyError: If the project does not exist
        """
        with self._get_connection() as conn:
            if conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is None:
                raise KeyError(f"Project not found: {project_id}")
            row = conn.execute(
                "SELECT MAX(version_number) AS latest FROM script_versions WHERE project_id = ?",
                (project_id,),
            ).fetchone()
            version = ScriptVersion(
                id=uuid4().hex,
                project_id=project_id,
                version_number=(row["latest"] or 0) + 1,
                content=content.strip(),
            )
            conn.execute(
                """
                INSERT INTO script_versions (id, project_id, version_number, content, generated_pdf_url)
                VALUES (?, ?, ?, ?, NULL)
                """,
                (version.id, version.project_id, version.version_number, version.content),
            )
        return version


class ProjectRepository:
    def __init__(self, db: CatalogDatabase) -> None:
        self._db = db

    def get(self, project_id: str) -> Optional[Project]:
        with self._db._get_connection() as conn:
            row = conn.execute(
                """
                SELECT p.*, o.name AS owner_name, o.email AS owner_email, o.logo_url AS owner_logo_url
                FROM projects p LEFT JOIN owners o ON o.id = p.owner_id
                WHERE p.id = ?
                """,
                (project_id,),
            ).fetchone()
        if not row:
            return None

        owner = None
        if row["owner_id"] and row["owner_name"] is not None:
            owner = Owner(
                id=row["owner_id"],
                name=row["owner_name"],
                email=row["owner_email"],
                logo_url=row["owner_logo_url"],
            )
        return Project(
            id=row["id"],
            title=row["title"],
            script_type=ScriptType(row["script_type"]),
            client_id=row["client_id"],
            owner=owner,
        )


class ClientRepository:
    def __init__(self, db: CatalogDatabase) -> None:
        self._db = db

    def get(self, client_id: str) -> Optional[Client]:
        with self._db._get_connection() as conn:
            row = conn.execute("SELECT * FROM clients WHERE id = ?", (client_id,)).fetchone()
        if not row:
            return None
        return Client(id=row["id"], name=row["name"], logo_url=row["logo_url"])


class VersionRepository:
    def __init__(self, db: CatalogDatabase) -> None:
        self._db = db

    def get(self, version_id: str) -> Optional[ScriptVersion]:
        with self._db._get_connection() as conn:
            row = conn.execute("SELECT * FROM script_versions WHERE id = ?", (version_id,)).fetchone()
        if not row:
            return None
        return ScriptVersion(
            id=row["id"],
            project_id=row["project_id"],
            version_number=row["version_number"],
            content=row["content"],
            generated_pdf_url=row["generated_pdf_url"],
        )

    def attach_artifact(self, version_id: str, ref: ArtifactRef) -> bool:
        """
        Record the latest generated artifact on a version.

        Returns:
            True if updated, False if the version does not exist
        """
        with self._db._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE script_versions SET generated_pdf_url = ? WHERE id = ?",
                (ref.path, version_id),
            )
            return cursor.rowcount > 0
