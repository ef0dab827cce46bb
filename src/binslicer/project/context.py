"""Project context: layout, manifest, resolved DB path and an open store."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from binslicer.core.hashing import canonicalize_path
from binslicer.project.config import ProjectConfig, load_project_config, save_project_config
from binslicer.project.layout import ProjectLayout
from binslicer.store.database import ProjectStore


@dataclass(slots=True)
class ProjectContext:
    """Everything a command needs about one project, loaded once."""

    layout: ProjectLayout
    config: ProjectConfig
    db_path: Path
    store: ProjectStore

    @classmethod
    def from_root(cls, root: Path | str) -> ProjectContext:
        """Load the manifest and open (migrating) the store.

        Raises:
            ConfigError: If the manifest is missing or malformed.
            StoreError: If the store cannot be opened or migrated.
        """
        layout = ProjectLayout.for_root(canonicalize_path(root))
        config = load_project_config(layout.project_config_path)
        db_path = config.resolved_db_path(layout.root)
        store = ProjectStore.open(db_path)
        return cls(layout=layout, config=config, db_path=db_path, store=store)

    @property
    def root(self) -> Path:
        return self.layout.root

    def save_config(self) -> None:
        save_project_config(self.config, self.layout.project_config_path)

    def resolve_binary_path(self, stored_path: str) -> Path:
        """Binary paths are stored relative to the root when possible."""
        path = Path(stored_path)
        return path if path.is_absolute() else self.layout.root / path

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> ProjectContext:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
