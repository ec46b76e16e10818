import pytest
from fastapi.testclient import TestClient

from app import main
from app.services import db_service, storage_service


@pytest.fixture(autouse=True)
def isolated_storage(tmp_path, monkeypatch):
    files_dir = tmp_path / "files"
    files_dir.mkdir()
    monkeypatch.setattr(db_service, "DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setattr(storage_service, "FILES_DIR", str(files_dir))
    for var in ("SENDGRID_API_KEY", "EMAIL_FROM", "VERYFI_CLIENT_ID", "VERYFI_USERNAME", "VERYFI_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    main._codes.clear()
    yield tmp_path


@pytest.fixture
def client():
    return TestClient(main.app)


@pytest.fixture
def user_id():
    return db_service.get_or_create_user("owner@example.com")


@pytest.fixture
def auth(user_id):
    token = main.create_access_token({"sub": str(user_id), "email": "owner@example.com", "user_id": user_id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def pdf_bytes():
    return b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\ntrailer\n<<>>\n%%EOF\n"
