"""Tests for serving the single-page frontend."""
import pytest
from fastapi.testclient import TestClient

from roomrelay.config import AppConfig, ServerSettings
from roomrelay.main import create_app


@pytest.fixture
def frontend_client(tmp_path):
    dist = tmp_path / "dist"
    (dist / "assets").mkdir(parents=True)
    (dist / "index.html").write_text("<html>app</html>", encoding="utf-8")
    (dist / "assets" / "app.js").write_text("console.log('hi')", encoding="utf-8")
    (tmp_path / "secret.txt").write_text("nope", encoding="utf-8")

    app = create_app(AppConfig(server=ServerSettings(static_dir=str(dist))))
    with TestClient(app) as client:
        yield client


def test_static_file_served(frontend_client):
    response = frontend_client.get("/assets/app.js")
    assert response.status_code == 200
    assert "console.log" in response.text


def test_client_routes_fall_back_to_index(frontend_client):
    for path in ("/", "/room/r1", "/deep/link/here"):
        response = frontend_client.get(path)
        assert response.status_code == 200
        assert response.text == "<html>app</html>"


def test_api_routes_take_precedence(frontend_client):
    assert frontend_client.get("/health").json()["status"] == "ok"
    assert frontend_client.get("/rooms/missing").status_code == 404


def test_no_escape_from_static_dir(frontend_client):
    response = frontend_client.get("/..%2Fsecret.txt")
    assert "nope" not in response.text


def test_frontend_not_mounted_without_static_dir(api_client):
    assert api_client.get("/some/page").status_code == 404
