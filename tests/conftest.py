import base64
import hashlib
import json
from datetime import date

import httpx
import pytest

from stockbook.application.services.ledger_service import LedgerService
from stockbook.application.services.sync_service import GitHubSyncService
from stockbook.domain.schemas.inventory import ContainerCreate, ContainerLine
from stockbook.infrastructure.credential_store import CredentialStore
from stockbook.infrastructure.encryption import TokenCipher

OWNER = "acme"
REPO = "books"
TOKEN = "ghp_" + "a" * 36


class FakeGitHub:
    """In-memory contents API for one repository, usable as a MockTransport handler."""

    def __init__(self, push: bool = True):
        self.files = {}
        self.push = push
        self.requests = []
        self._commits = 0

    def put_file(self, name: str, content: str) -> str:
        sha = hashlib.sha1(f"{name}:{content}:{self._commits}".encode()).hexdigest()
        self._commits += 1
        self.files[name] = (content, sha)
        return sha

    def document(self, name: str) -> dict:
        return json.loads(self.files[name][0])

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        repo_path = f"/repos/{OWNER}/{REPO}"

        if path == repo_path:
            return httpx.Response(200, json={
                "name": REPO,
                "full_name": f"{OWNER}/{REPO}",
                "private": True,
                "permissions": {"pull": True, "push": self.push},
            })

        if not path.startswith(f"{repo_path}/contents"):
            return httpx.Response(404, json={"message": "Not Found"})

        name = path[len(f"{repo_path}/contents"):].lstrip("/")

        if request.method == "GET":
            if name == "":
                return httpx.Response(200, json=[
                    {"name": file_name, "type": "file"} for file_name in self.files
                ])
            if name not in self.files:
                return httpx.Response(404, json={"message": "Not Found"})
            content, sha = self.files[name]
            return httpx.Response(200, json={
                "name": name,
                "sha": sha,
                "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            })

        if request.method == "PUT":
            body = json.loads(request.content)
            existing = self.files.get(name)
            if existing and body.get("sha") != existing[1]:
                if body.get("sha") is None:
                    return httpx.Response(422, json={"message": '"sha" wasn\'t supplied.'})
                return httpx.Response(409, json={"message": f"{name} does not match {body['sha']}"})

            content = base64.b64decode(body["content"]).decode("utf-8")
            sha = self.put_file(name, content)
            return httpx.Response(200 if existing else 201, json={
                "content": {"name": name, "sha": sha},
                "commit": {"sha": f"commit-{self._commits}", "message": body["message"], "html_url": "https://github.test"},
            })

        return httpx.Response(405, json={"message": "Method Not Allowed"})


@pytest.fixture
def fake_github():
    return FakeGitHub()


@pytest.fixture
def cipher():
    return TokenCipher(fingerprint="test-machine", iterations=1000)


@pytest.fixture
def credential_store(tmp_path):
    return CredentialStore(str(tmp_path / "credentials.json"))


@pytest.fixture
def sync_service(fake_github, credential_store, cipher):
    return GitHubSyncService(
        credential_store=credential_store,
        cipher=cipher,
        transport=httpx.MockTransport(fake_github),
    )


@pytest.fixture
def ledger():
    return LedgerService()


def build_container(lines, shipping_cost=0.0, customs_cost=0.0, container_id=None, day=date(2024, 1, 10)):
    return ContainerCreate(
        id=container_id,
        supplier="Nile Traders",
        purchase_date=day,
        shipping_cost=shipping_cost,
        customs_cost=customs_cost,
        products=[ContainerLine(**line) for line in lines],
    )


@pytest.fixture
def make_container():
    return build_container


@pytest.fixture
def stocked_ledger(ledger):
    """Ledger with one container: 10 bags of rice landed at 3.00/kg (75.00 per bag)."""
    ledger.add_container(build_container(
        [{"product_name": "Rice", "bag_quantity": 10, "cost_per_kg": 2.0, "bag_weight": 25}],
        shipping_cost=100.0,
        customs_cost=150.0,
        container_id="C1",
    ))
    return ledger
