"""Shared test fixtures for meter reader tests."""

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add parent directory to path so we can import the modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from auth import AuthContext  # noqa: E402

# Smallest JPEG-looking payload: SOI marker, a few bytes, EOI marker
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64 + b"\xff\xd9"


@pytest.fixture
def sample_image_bytes() -> bytes:
    return JPEG_BYTES


@pytest.fixture
def auth_ctx() -> AuthContext:
    return AuthContext(user_id="user-1", email="max@example.com", token="token-abc")


@pytest.fixture
def electricity_reply() -> str:
    """Vision model reply for a clear electricity meter photo."""
    return json.dumps({
        "meter_id": "E123",
        "meter_type": "electricity",
        "reading_value": 31781.8,
        "unit": "kWh",
        "confidence": "high",
        "confidence_score": 0.95,
    })


@pytest.fixture
def gas_reply() -> str:
    return json.dumps({
        "meter_id": "G-7781",
        "meter_type": "gas",
        "reading_value": "1234.567",
        "unit": "m3",
        "confidence": "medium",
        "confidence_score": 0.7,
    })


@pytest.fixture
def fenced_reply(electricity_reply: str) -> str:
    """The same reply wrapped in a markdown code fence."""
    return f"```json\n{electricity_reply}\n```"


@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "uploads"
    directory.mkdir()
    return directory


@pytest.fixture
def fake_vision_client(electricity_reply: str) -> MagicMock:
    client = MagicMock()
    client.extract.return_value = electricity_reply
    return client


@pytest.fixture
def fake_store() -> MagicMock:
    store = MagicMock()
    store.save.return_value = 42
    store.list_readings.return_value = []
    return store


@pytest.fixture
def fake_authenticator(auth_ctx: AuthContext) -> MagicMock:
    authenticator = MagicMock()
    authenticator.verify.return_value = auth_ctx
    return authenticator


@pytest.fixture
def client(upload_dir: Path, fake_vision_client, fake_store, fake_authenticator):
    """TestClient with every outbound collaborator replaced by a fake."""
    from fastapi.testclient import TestClient

    import main
    from config import Settings

    test_settings = Settings(
        SUPABASE_URL="http://fake-db",
        SUPABASE_KEY="anon",
        ANTHROPIC_API_KEY="sk-test",
        UPLOAD_DIR=str(upload_dir),
        MAX_FILE_SIZE_MB=1,
    )

    main.app.dependency_overrides[main.get_settings] = lambda: test_settings
    main.app.dependency_overrides[main.get_vision_client] = lambda: fake_vision_client
    main.app.dependency_overrides[main.get_store] = lambda: fake_store
    main.app.dependency_overrides[main.get_authenticator] = lambda: fake_authenticator

    yield TestClient(main.app)

    main.app.dependency_overrides.clear()
