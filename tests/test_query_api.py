from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from relay.core.limits import limiter
from relay.dependencies import get_answer_client, get_audit_writer, get_resolver
from relay.errors import BackendUnavailable
from relay.events.models import AnswerResult, Citation
from relay.records.audit import AuditWriter, InMemoryAuditRepository
from relay.routers import query
from relay.tenants.crypto import CredentialCipher
from relay.tenants.repository import InMemoryTenantRepository
from relay.tenants.resolver import TenantResolver

from conftest import FakeAnswers


@pytest.fixture
def answers():
    return FakeAnswers()


@pytest.fixture
def audit():
    return InMemoryAuditRepository()


@pytest.fixture
def client(monkeypatch, settings, answers, audit):
    monkeypatch.setenv("TENANT_TOKEN_SECRET", "relay-signing-key")
    monkeypatch.setenv("TENANT_TOKEN_AUDIENCE", "relay-api")
    monkeypatch.setenv("TENANT_TOKEN_ISSUER", "auth.vault")
    monkeypatch.setattr(query, "get_settings", lambda: settings)
    tenants = InMemoryTenantRepository()
    tenants.personas["tenant-a"] = "Answer as the tax desk."
    resolver = TenantResolver(tenants, CredentialCipher(settings.credential_encryption_key), settings)

    app = FastAPI()
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.include_router(query.router)
    app.dependency_overrides[get_answer_client] = lambda: answers
    app.dependency_overrides[get_resolver] = lambda: resolver
    app.dependency_overrides[get_audit_writer] = lambda: AuditWriter(audit)
    return TestClient(app)


def _auth() -> dict[str, str]:
    token = jwt.encode(
        {
            "aud": "relay-api",
            "iss": "auth.vault",
            "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
            "tenant_id": "tenant-a",
            "user_id": "user-a",
        },
        "relay-signing-key",
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}


def test_query_returns_structured_answer(client, answers, audit):
    answers.result = AnswerResult(
        text="Due on 30 June.",
        confidence_score=0.88,
        citations=[
            Citation(index=1, document_id="doc-1", source_name="Filing.pdf", excerpt="30 June", relevance_score=0.9)
        ],
    )

    response = client.post("/api/v1/query", json={"query": "When is it due?"}, headers=_auth())

    body = response.json()
    assert response.status_code == 200
    assert body["decision"] == "answer"
    assert body["answer"] == "Due on 30 June."
    assert body["citations"][0]["confidenceColor"] == "green"
    assert body["citations"][0]["documentUrl"] == "/documents/doc-1"
    assert answers.calls[0]["user_id"] == "user-a"
    assert answers.calls[0]["system_prompt_override"] == "Answer as the tax desk."
    [record] = audit.records
    assert record.action_type == "api_query"
    assert record.tenant_id == "tenant-a"


def test_query_low_confidence_is_silence(client, answers):
    answers.result = AnswerResult(text="Maybe June?", confidence_score=0.2, suggestions=["Upload the filing"])

    body = client.post("/api/v1/query", json={"query": "When is it due?"}, headers=_auth()).json()

    assert body["decision"] == "silence"
    assert body["answer"] is None
    assert body["suggestions"] == ["Upload the filing"]


def test_query_backend_outage_is_502(client, answers):
    answers.error = BackendUnavailable("Answer backend timed out")

    response = client.post("/api/v1/query", json={"query": "When is it due?"}, headers=_auth())

    assert response.status_code == 502
    assert response.json()["error"] == "UPSTREAM_FAILURE"


def test_query_requires_token(client):
    assert client.post("/api/v1/query", json={"query": "hi"}).status_code == 401


def test_query_validates_length(client):
    response = client.post("/api/v1/query", json={"query": ""}, headers=_auth())

    assert response.status_code == 422
