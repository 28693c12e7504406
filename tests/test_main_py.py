import base64
import importlib.util
import os

import pytest
from fastapi.testclient import TestClient

from rdso.controller import Controller
from rdso.events import EventRecorder
from rdso.resources import Identity
from rdso.settings import Settings


def _import_main_module(project_root):
    """Import main.py as a module without requiring it to be installed as a package."""
    main_path = os.path.join(project_root, "main.py")
    spec = importlib.util.spec_from_file_location("rdso_main", main_path)
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)  # type: ignore[attr-defined]
    return mod


def _basic_auth(user: str, password: str) -> dict:
    token = base64.b64encode(f"{user}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


@pytest.fixture
def main():
    return _import_main_module(os.path.dirname(os.path.dirname(__file__)))


@pytest.fixture
def config():
    return Settings(admin_user="admin", admin_password="secure123")


@pytest.fixture
def controller(specs, store, sink, make_spec, config):
    specs.put("ords", make_spec())
    return Controller(specs, store, EventRecorder(sink), config=config)


@pytest.fixture
def client(main, controller, config):
    with TestClient(main.create_app(controller, config=config)) as c:
        yield c


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_reconcile_requires_basic_auth(client):
    assert client.post("/instances/default/ords/reconcile").status_code == 401
    assert client.post("/instances/default/ords/reconcile", headers=_basic_auth("admin", "wrong")).status_code == 401

    r = client.post("/instances/default/ords/reconcile", headers=_basic_auth("admin", "secure123"))
    assert r.status_code == 200
    body = r.json()
    assert body["outcome"] == "succeeded"
    assert body["created"] == 5


def test_reconcile_is_open_without_admin_credentials(main, controller):
    with TestClient(main.create_app(controller, config=Settings(admin_user=None))) as c:
        assert c.post("/instances/default/ords/reconcile").status_code == 200


def test_reconcile_while_busy_is_409(client, controller):
    controller.runtime.try_acquire(Identity("default", "ords"))
    r = client.post("/instances/default/ords/reconcile", headers=_basic_auth("admin", "secure123"))
    assert r.status_code == 409


def test_instances_show_status_and_last_pass(client):
    r = client.get("/instances")
    assert r.status_code == 200
    assert r.json()[0]["last_pass"] is None

    client.post("/instances/default/ords/reconcile", headers=_basic_auth("admin", "secure123"))

    r = client.get("/instances/default/ords")
    assert r.status_code == 200
    view = r.json()
    assert view["status"]["state"] == "Progressing"
    assert view["status"]["workloadStatus"] == "Preparing"
    assert view["last_pass"]["outcome"] == "succeeded"


def test_unknown_instance_is_404(client):
    assert client.get("/instances/default/missing").status_code == 404


def test_journal_endpoints(client):
    client.post("/instances/default/ords/reconcile", headers=_basic_auth("admin", "secure123"))

    passes = client.get("/passes", params={"limit": 5}).json()
    assert passes[0]["instance"] == "ords"
    assert passes[0]["restarted"] is False

    reasons = {e["reason"] for e in client.get("/events").json()}
    assert {"Create", "ManualReconcile"} <= reasons

    assert client.get("/events", params={"limit": 0}).status_code == 422
