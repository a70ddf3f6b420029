"""HTTP tests for the reconciliation router, backed by in-memory stores."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from coachsync.config import Settings, get_settings
from coachsync.dependencies import get_orchestrator
from coachsync.main import create_app
from coachsync.reconciliation.config_loader import ReconciliationConfig
from coachsync.reconciliation.orchestrator import ReconciliationOrchestrator
from coachsync.reconciliation.precedence import PrecedenceRegistry
from coachsync.reconciliation.stores import InMemoryConflictStore, InMemoryPrecedenceRuleStore
from coachsync.reconciliation.tests.conftest import TEST_ATHLETE_ID

API = "/api/v1/reconciliation"


@pytest.fixture
def client(orchestrator: ReconciliationOrchestrator) -> Iterator[TestClient]:
    # No ``with`` block: the lifespan (DB pool) is not started
    app = create_app()
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def same_run_body(garmin_activity_raw: dict, strava_activity_raw: dict) -> list[dict]:
    return [
        {"platform": "garmin", "payload": garmin_activity_raw},
        {"platform": "strava", "payload": strava_activity_raw},
    ]


def _set_rule(client: TestClient, precedence: dict) -> None:
    response = client.put(
        f"{API}/rules/precedence/{TEST_ATHLETE_ID}",
        json={"rule_name": "coach default", "platform_precedence": precedence},
    )
    assert response.status_code == 200, response.text


class TestRunEndpoint:
    def test_run_auto_resolves(self, client: TestClient, same_run_body: list[dict]) -> None:
        _set_rule(client, {"garmin": 1, "strava": 2})
        response = client.post(f"{API}/run/{TEST_ATHLETE_ID}", json=same_run_body)
        assert response.status_code == 200
        body = response.json()
        assert body["conflicts_detected"] == 1
        assert body["auto_resolved"] == 1
        assert body["conflicts"][0]["status"] == "RESOLVED"
        assert body["conflicts"][0]["resolution"]["primary_platform"] == "garmin"
        assert [r["platform"] for r in body["canonical_records"]] == ["garmin"]

    def test_run_reports_skipped(self, client: TestClient, same_run_body: list[dict]) -> None:
        same_run_body.append({"platform": "whoop", "payload": {"id": 1}})
        body = client.post(f"{API}/run/{TEST_ATHLETE_ID}", json=same_run_body).json()
        assert body["skipped_records"] == 1
        assert body["skipped"][0]["platform"] == "whoop"
        assert body["requires_review"] == 1

    def test_run_rejects_blank_platform(self, client: TestClient) -> None:
        response = client.post(
            f"{API}/run/{TEST_ATHLETE_ID}", json=[{"platform": "", "payload": {}}]
        )
        assert response.status_code == 422


class TestConflictEndpoints:
    def _review_conflict_id(self, client: TestClient, body: list[dict]) -> str:
        result = client.post(f"{API}/run/{TEST_ATHLETE_ID}", json=body).json()
        return result["conflicts"][0]["id"]

    def test_unresolved_and_review_queues(
        self, client: TestClient, same_run_body: list[dict]
    ) -> None:
        conflict_id = self._review_conflict_id(client, same_run_body)
        unresolved = client.get(f"{API}/conflicts/unresolved/{TEST_ATHLETE_ID}").json()
        review = client.get(f"{API}/conflicts/requires-review").json()
        assert [c["id"] for c in unresolved] == [conflict_id]
        assert [c["id"] for c in review] == [conflict_id]
        assert review[0]["review_reason"].startswith("No precedence rule")

    def test_get_conflict(self, client: TestClient, same_run_body: list[dict]) -> None:
        conflict_id = self._review_conflict_id(client, same_run_body)
        response = client.get(f"{API}/conflicts/{conflict_id}")
        assert response.status_code == 200
        assert sorted(response.json()["conflicting_records"]) == ["garmin", "strava"]

    def test_manual_resolve(self, client: TestClient, same_run_body: list[dict]) -> None:
        conflict_id = self._review_conflict_id(client, same_run_body)
        response = client.post(
            f"{API}/conflicts/{conflict_id}/resolve",
            json={
                "primary_platform": "strava",
                "retained_sources": ["strava"],
                "resolution": "Power meter only paired with the phone",
                "resolved_by": "coach-9",
            },
        )
        assert response.status_code == 200
        resolution = response.json()["resolution"]
        assert resolution["resolved_by"] == "coach-9"
        assert resolution["retained_sources"] == ["strava"]
        assert client.get(f"{API}/conflicts/requires-review").json() == []

    def test_resolve_twice_conflicts(self, client: TestClient, same_run_body: list[dict]) -> None:
        conflict_id = self._review_conflict_id(client, same_run_body)
        body = {"primary_platform": "garmin", "retained_sources": ["garmin"], "resolution": "x"}
        assert client.post(f"{API}/conflicts/{conflict_id}/resolve", json=body).status_code == 200
        assert client.post(f"{API}/conflicts/{conflict_id}/resolve", json=body).status_code == 409

    def test_resolve_invalid_platform(self, client: TestClient, same_run_body: list[dict]) -> None:
        conflict_id = self._review_conflict_id(client, same_run_body)
        body = {"primary_platform": "whoop", "retained_sources": ["whoop"], "resolution": "x"}
        assert client.post(f"{API}/conflicts/{conflict_id}/resolve", json=body).status_code == 422

    def test_unknown_conflict(self, client: TestClient) -> None:
        body = {"primary_platform": "garmin", "retained_sources": ["garmin"], "resolution": "x"}
        assert client.post(f"{API}/conflicts/missing/resolve", json=body).status_code == 404
        assert client.get(f"{API}/conflicts/missing").status_code == 404


class TestPrecedenceEndpoints:
    def test_round_trip(self, client: TestClient) -> None:
        _set_rule(client, {"Garmin": 1, "icu": 2})
        body = client.get(f"{API}/rules/precedence/{TEST_ATHLETE_ID}").json()
        assert body["platform_precedence"] == {"garmin": 1, "intervals.icu": 2}
        assert body["rule_name"] == "coach default"

    def test_missing_rule(self, client: TestClient) -> None:
        assert client.get(f"{API}/rules/precedence/nobody").status_code == 404

    def test_invalid_rule(self, client: TestClient) -> None:
        response = client.put(
            f"{API}/rules/precedence/{TEST_ATHLETE_ID}",
            json={"rule_name": "bad", "platform_precedence": {"garmin": 1, "strava": 1}},
        )
        assert response.status_code == 422
        assert "Duplicate ranks" in response.json()["detail"]

    @pytest.mark.parametrize("rank", [True, "2", 1.5])
    def test_non_integer_rank_rejected(self, client: TestClient, rank: object) -> None:
        response = client.put(
            f"{API}/rules/precedence/{TEST_ATHLETE_ID}",
            json={"rule_name": "x", "platform_precedence": {"garmin": rank, "strava": 3}},
        )
        assert response.status_code == 422
        assert client.get(f"{API}/rules/precedence/{TEST_ATHLETE_ID}").status_code == 404


class TestHealth:
    def test_in_memory_backend(self, client: TestClient) -> None:
        client.app.dependency_overrides[get_settings] = lambda: Settings(store_backend="memory")
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["database"] == "in-memory"
        assert body["reconciliation_config_version"]

    def test_reports_orchestrator_config_version(
        self, client: TestClient, reconciliation_config: ReconciliationConfig
    ) -> None:
        custom = ReconciliationConfig(
            version="athlete-lab-3",
            detection=reconciliation_config.detection,
            platform_aliases=dict(reconciliation_config.platform_aliases),
        )
        orchestrator = ReconciliationOrchestrator(
            conflict_store=InMemoryConflictStore(),
            registry=PrecedenceRegistry(InMemoryPrecedenceRuleStore(), custom),
            config=custom,
        )
        client.app.dependency_overrides[get_orchestrator] = lambda: orchestrator
        client.app.dependency_overrides[get_settings] = lambda: Settings(store_backend="memory")
        body = client.get("/health").json()
        assert body["reconciliation_config_version"] == "athlete-lab-3"
