"""
Pytest Configuration File
-------------------------
Defines global test fixtures for the CropClaim engine.

- Each test gets its own SQLite database file (tmp_path) with the
  reference farmers / insurers / reviewers / policies seeded
- Collaborators are the in-process simulators, so no network calls
- The FastAPI client is wired to the per-test engine via dependency override
"""

from datetime import date
import pytest

from cropclaim.config import config
from cropclaim.services.claim_engine import ClaimEngine
from cropclaim.store.claim_store import ClaimStore
from cropclaim.utils.db import build_engine, build_session_factory, init_db, seed_reference_data
from cropclaim.utils.external_apis import SimulatedAssessmentClient, SimulatedPaymentClient

INCIDENT_DAY = date(2024, 7, 15)


# =========================================================
# 🧩 Test Config Fixture
# =========================================================
@pytest.fixture(scope="function")
def mock_test_config(monkeypatch):
    """Pin the config values the engine reads so tests don't depend on a local .env."""
    monkeypatch.setattr(config, "ENV", "test")
    monkeypatch.setattr(config, "COLLABORATOR_MODE", "simulated")
    monkeypatch.setattr(config, "AUTO_RELEASE_DECISIONS", True)
    monkeypatch.setattr(config, "HOLD_FRAUD_SUSPECT_PAYOUTS", True)
    monkeypatch.setattr(config, "DUPLICATE_INCIDENT_WINDOW_DAYS", 7)
    monkeypatch.setattr(config, "ASSESSMENT_TIMEOUT_HOURS", 24)
    yield config


# =========================================================
# 🗄️ Database
# =========================================================
@pytest.fixture(scope="function")
def session_factory(tmp_path, mock_test_config):
    """Fresh, seeded SQLite database per test."""
    db_engine = build_engine(f"sqlite:///{tmp_path / 'cropclaim_test.db'}")
    init_db(db_engine)
    factory = build_session_factory(db_engine)
    seed_reference_data(factory)
    yield factory
    db_engine.dispose()


@pytest.fixture(scope="function")
def store(session_factory):
    return ClaimStore(session_factory)


# =========================================================
# 🛰️ Collaborators & Engine
# =========================================================
@pytest.fixture(scope="function")
def assessment_client():
    return SimulatedAssessmentClient()


@pytest.fixture(scope="function")
def payment_client():
    return SimulatedPaymentClient()


@pytest.fixture(scope="function")
def engine_factory(store, assessment_client, payment_client):
    """Build engines that share the test database and simulators (e.g. auto_release=False)."""
    def _build(**kwargs):
        return ClaimEngine(
            store=store,
            assessment_client=assessment_client,
            payment_client=payment_client,
            **kwargs,
        )
    return _build


@pytest.fixture(scope="function")
def engine(engine_factory):
    return engine_factory()


# =========================================================
# 📥 Claim Builders
# =========================================================
@pytest.fixture(scope="function")
def submit(engine):
    """Submit a claim for FRM-001 on POL-2024-0001 (Active 2024-06-01..2024-10-31)."""
    def _submit(key="k1", policy_id="POL-2024-0001", farmer_id="FRM-001", day=INCIDENT_DAY,
                amount=50000.0, evidence_refs=None, target=None):
        target = target or engine
        return target.intake.submit_claim(
            idempotency_key=key,
            policy_id=policy_id,
            farmer_id=farmer_id,
            incident={
                "date_of_incident": day,
                "location_of_incident": "Nashik, Maharashtra",
                "description": "Hailstorm flattened the standing wheat crop",
                "amount_claimed": amount,
            },
            evidence_refs=["s3://evidence/FRM-001/field-1.jpg"] if evidence_refs is None else evidence_refs,
        )
    return _submit


@pytest.fixture(scope="function")
def assessed_claim(engine, submit):
    """A claim in AI_PROCESSED with a successful assessment on file."""
    def _assessed(key="k1", target=None, **kwargs):
        target = target or engine
        claim, _ = submit(key=key, target=target, **kwargs)
        target.assessment.receive_assessment_result(
            claim.claim_id,
            {"ai_damage_percent": 62.0, "confidence_score": 0.81, "ai_recommended_amount": 46500.0},
        )
        return target.store.get_claim(claim.claim_id)
    return _assessed


# =========================================================
# 🌐 FastAPI Test Client
# =========================================================
@pytest.fixture(scope="function")
def client(engine):
    """FastAPI TestClient bound to the per-test engine."""
    from fastapi.testclient import TestClient
    from cropclaim.api.dependencies import get_claim_engine
    from cropclaim.main import app

    app.dependency_overrides[get_claim_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def as_actor():
    """Headers that identify the caller in local/test mode."""
    def _headers(actor_id: str, **extra) -> dict:
        return {"X-Actor-Id": actor_id, **extra}
    return _headers
