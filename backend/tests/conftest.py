"""
Pytest Configuration and Fixtures
"""

import os
import pytest
import tempfile
from pathlib import Path
from typing import Callable, Generator
from unittest.mock import AsyncMock, Mock

import httpx
import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from mediaforge.config.settings import settings
from mediaforge.models import Base
from mediaforge.models.asset import AssetModel  # noqa: F401
from mediaforge.models.job import JobModel
from mediaforge.services.downloader import MediaDownloader
from mediaforge.services.media_storage import DurableStorage
from mediaforge.services.storage import JobDB

from fixtures import SAMPLE_MP4_BYTES, SAMPLE_PNG_BYTES


STORAGE_PUBLIC_URL = "https://media.test"
STORAGE_ROOT = "mediaforge"


@pytest.fixture
def test_db_path() -> Generator[str, None, None]:
    """Create temporary database file"""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.db', delete=False) as f:
        db_path = f.name
    yield db_path
    # Cleanup
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def test_db_engine(test_db_path: str) -> Generator:
    """Create test database engine"""
    engine = create_engine(
        f"sqlite:///{test_db_path}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(test_db_engine) -> sessionmaker:
    """Session factory for tests that need several independent sessions"""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


@pytest.fixture
def test_db_session(session_factory) -> Generator[Session, None, None]:
    """Create test database session"""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def empty_db_session(tmp_path) -> Generator[Session, None, None]:
    """Session on a database whose tables were never created"""
    engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    session = sessionmaker(bind=engine)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create temporary directory for file operations"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def media_response(request: httpx.Request) -> httpx.Response:
    """Serve fake media for any GET; paths containing "missing" answer 404"""
    path = request.url.path
    if "missing" in path:
        return httpx.Response(404, text="not found")
    if "broken" in path:
        return httpx.Response(500, text="upstream error")
    if path.endswith(".mp4"):
        return httpx.Response(200, content=SAMPLE_MP4_BYTES, headers={"content-type": "video/mp4"})
    return httpx.Response(200, content=SAMPLE_PNG_BYTES, headers={"content-type": "image/png"})


@pytest.fixture
def media_client() -> httpx.AsyncClient:
    """HTTP client serving fake media"""
    return httpx.AsyncClient(transport=httpx.MockTransport(media_response))


@pytest.fixture
def downloader(media_client) -> MediaDownloader:
    return MediaDownloader(client=media_client)


@pytest.fixture
def storage(downloader) -> DurableStorage:
    """In-memory durable storage"""
    return DurableStorage(
        downloader=downloader,
        bucket="",
        access_key="",
        secret_key="",
        public_url=STORAGE_PUBLIC_URL,
        root_folder=STORAGE_ROOT,
    )


@pytest.fixture
def mock_provider() -> Mock:
    """Provider adapter with async methods left for each test to script"""
    mock = Mock()
    mock.submit_generation = AsyncMock()
    mock.get_status = AsyncMock()
    mock.generate_image = AsyncMock()
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def mock_dispatcher() -> Mock:
    mock = Mock()
    mock.dispatch = AsyncMock(return_value=True)
    mock.sweep = AsyncMock(return_value=0)
    return mock


@pytest.fixture
def make_job() -> Callable[..., JobModel]:
    """Insert a queued job; keyword arguments override column values"""

    def _make(db: Session, **overrides) -> JobModel:
        values = {
            "kind": "single",
            "user_id": "user-1",
            "source_url": f"{STORAGE_PUBLIC_URL}/{STORAGE_ROOT}/inputs/user-1/source.png",
            "source_media_type": "image",
            "directive": "turn this into a watercolor painting",
            "params": {"strength": 0.8, "steps": 30, "guidance_scale": 7.0},
            "visibility": "private",
            "allow_remix": False,
        }
        values.update(overrides)
        return JobDB.create_job(db, JobModel(**values))

    return _make


@pytest.fixture
def make_token() -> Callable[[str], str]:
    """Signed bearer token for a user"""

    def _make(user_id: str = "user-1") -> str:
        return jwt.encode({"sub": user_id}, settings.jwt_secret, algorithm=settings.jwt_algorithm)

    return _make


@pytest.fixture
def scratch_root(tmp_path, monkeypatch) -> Path:
    """Point story scratch space at a temp directory"""
    root = tmp_path / "scratch"
    root.mkdir()
    monkeypatch.setattr(settings, "scratch_root", str(root))
    return root
