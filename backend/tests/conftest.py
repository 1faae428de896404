from __future__ import annotations

import datetime as dt
import os
import tempfile
from pathlib import Path
from typing import Generator
from zoneinfo import ZoneInfo

_APP_DIR = tempfile.mkdtemp(prefix="worknest-app-")
os.environ.setdefault("WN_SQLITE_PATH", str(Path(_APP_DIR) / "app.db"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from worknest import models
from worknest.database import configure_sqlite_engine, get_db
from worknest.main import app

IST = ZoneInfo("Asia/Kolkata")


def at(day: dt.date, hhmm: str, tz: dt.tzinfo = IST) -> dt.datetime:
    """UTC instant for a local wall-clock time."""
    hour, minute = (int(part) for part in hhmm.split(":"))
    return dt.datetime.combine(day, dt.time(hour, minute), tzinfo=tz).astimezone(dt.timezone.utc)


class Factory:
    def __init__(self, session: Session):
        self.session = session

    def _save(self, instance):
        self.session.add(instance)
        self.session.flush()
        return instance

    def user(self, name: str = "Asha", **kwargs) -> models.User:
        kwargs.setdefault("role", "employee")
        kwargs.setdefault("is_approved", True)
        kwargs.setdefault("joined_at", dt.date(2023, 1, 1))
        return self._save(models.User(name=name, **kwargs))

    def project(self, name: str = "Apollo", **kwargs) -> models.Project:
        kwargs.setdefault("status", "in_progress")
        return self._save(models.Project(name=name, **kwargs))

    def task(self, project: models.Project, title: str = "Daily report", **kwargs) -> models.Task:
        return self._save(models.Task(project=project, title=title, **kwargs))

    def subtask(self, task: models.Task, title: str = "Upload notes", **kwargs) -> models.Subtask:
        return self._save(models.Subtask(task=task, title=title, **kwargs))


@pytest.fixture(scope="session")
def temp_db_path() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "test.db"
        yield path


@pytest.fixture(scope="session")
def engine(temp_db_path: Path):
    url = f"sqlite:///{temp_db_path}"
    engine = configure_sqlite_engine(create_engine(url, connect_args={"check_same_thread": False}, future=True))
    models.Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="function")
def session(engine) -> Generator[Session, None, None]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionTesting = sessionmaker(bind=connection, autoflush=False, autocommit=False, future=True)
    session = SessionTesting()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(scope="function")
def client(session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def factory(session: Session) -> Factory:
    return Factory(session)


@pytest.fixture()
def tz() -> ZoneInfo:
    return IST
