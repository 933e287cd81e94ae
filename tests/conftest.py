from pathlib import Path

import pytest

from visibility_scheduler.adapters.sqlite.migrator import SQLiteMigrator


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    """Fresh migrated SQLite database."""
    path = str(tmp_path / "visibility.db")
    SQLiteMigrator(path).run_migrations()
    return path


@pytest.fixture
def rules_path() -> Path:
    """The sample rules file at the project root."""
    path = Path(__file__).resolve().parent.parent / "rules.yaml"
    if not path.exists():
        raise FileNotFoundError(f"Rules not found at {path}")
    return path
