"""HTTP tests for the trip endpoints."""

import time
from collections.abc import Callable, Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from tripplanner.config import Settings
from tripplanner.main import create_app
from tripplanner.models.common import ProducerType
from tripplanner.providers.executor import ProviderExecutor
from tripplanner.services.container import build_container

TRIP_BODY = {
    "destination": "Paris, France",
    "origin": "JFK",
    "departure_date": "2026-06-01",
    "return_date": "2026-06-05",
    "travelers": 2,
    "producers": ["flight", "dining"],
}


@pytest.fixture
def make_client(
    settings: Settings, executor: ProviderExecutor
) -> Iterator[Callable[..., TestClient]]:
    """Factory for clients whose lifespan (and background loop) stays open for the test."""
    clients: list[TestClient] = []

    def make(providers: dict[ProducerType, Any] | None = None, **overrides: Any) -> TestClient:
        container = build_container(
            settings.model_copy(update=overrides), providers=providers, executor=executor
        )
        client = TestClient(create_app(container=container))
        client.__enter__()
        clients.append(client)
        return client

    yield make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(
    make_client: Callable[..., TestClient],
    static_provider: Any,
    failing_provider: Any,
    flight_items: list[dict[str, Any]],
) -> TestClient:
    return make_client(
        providers={
            ProducerType.flight: static_provider(flight_items),
            ProducerType.dining: failing_provider(),
        }
    )


def wait_until_settled(client: TestClient, trip_id: str, timeout: float = 5.0) -> dict[str, Any]:
    """Poll trip status until the aggregate leaves in_progress."""
    deadline = time.monotonic() + timeout
    while True:
        response = client.get(f"/trips/{trip_id}/status")
        assert response.status_code == 200
        data: dict[str, Any] = response.json()
        if data["overall_status"] != "in_progress":
            return data
        if time.monotonic() > deadline:
            raise AssertionError(f"Trip {trip_id} still in progress after {timeout}s")
        time.sleep(0.01)


def create_trip(client: TestClient, **overrides: Any) -> str:
    response = client.post("/trips", json={**TRIP_BODY, **overrides})
    assert response.status_code == 202, response.text
    trip_id: str = response.json()["trip_id"]
    return trip_id


class TestCreateAndPoll:
    def test_create_returns_202_with_initial_states(self, client: TestClient) -> None:
        response = client.post("/trips", json=TRIP_BODY)

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "planning"
        assert set(data["producer_execution"]) == {"flight", "dining"}
        wait_until_settled(client, data["trip_id"])

    def test_status_reports_partial_run(self, client: TestClient) -> None:
        trip_id = create_trip(client)

        status = wait_until_settled(client, trip_id)

        assert status["overall_status"] == "partial"
        assert status["trip_status"] == "recommendations_ready"
        assert status["per_producer_status"]["flight"]["status"] == "completed"
        assert status["per_producer_status"]["dining"]["status"] == "failed"
        assert status["recommendation_counts"] == {"flight": 3, "dining": 0}

    def test_get_trip(self, client: TestClient) -> None:
        trip_id = create_trip(client, start=False)

        response = client.get(f"/trips/{trip_id}")

        assert response.status_code == 200
        assert response.json()["status"] == "draft"
        assert response.json()["currency"] == "USD"

    def test_unknown_trip_is_404(self, client: TestClient) -> None:
        response = client.get("/trips/does-not-exist")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_invalid_body_is_400_with_field_details(self, client: TestClient) -> None:
        body = {k: v for k, v in TRIP_BODY.items() if k != "departure_date"}

        response = client.post("/trips", json=body)

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert any(d["field"] == "departure_date" for d in error["details"])

    def test_producer_outside_allow_list_is_400(
        self, make_client: Callable[..., TestClient]
    ) -> None:
        client = make_client(enabled_producers=["flight"])

        response = client.post("/trips", json=TRIP_BODY)

        assert response.status_code == 400
        assert response.json()["error"]["details"][0]["field"] == "producers"


class TestRecommendations:
    def test_list_and_filter(self, client: TestClient) -> None:
        trip_id = create_trip(client)
        wait_until_settled(client, trip_id)

        response = client.get(
            f"/trips/{trip_id}/recommendations/flight",
            params={"sort_by": "price_asc", "limit": 2},
        )

        assert response.status_code == 200
        page = response.json()
        assert page["total"] == 3
        assert [item["price"]["amount"] for item in page["items"]] == [250, 300]

    def test_failed_producer_is_409_not_ready(self, client: TestClient) -> None:
        trip_id = create_trip(client)
        wait_until_settled(client, trip_id)

        response = client.get(f"/trips/{trip_id}/recommendations/dining")

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "not_ready"
        assert error["producer_type"] == "dining"
        assert error["producer_status"]["status"] == "failed"

    def test_unknown_producer_type_is_400(self, client: TestClient) -> None:
        trip_id = create_trip(client, start=False)

        response = client.get(f"/trips/{trip_id}/recommendations/boats")

        assert response.status_code == 400

    def test_get_single_recommendation(self, client: TestClient) -> None:
        trip_id = create_trip(client)
        wait_until_settled(client, trip_id)
        items = client.get(f"/trips/{trip_id}/recommendations/flight").json()["items"]

        response = client.get(f"/trips/{trip_id}/recommendations/flight/{items[0]['id']}")

        assert response.status_code == 200
        assert response.json()["name"] == items[0]["name"]


class TestSelectAndRerun:
    def test_select_then_finalize(self, client: TestClient) -> None:
        trip_id = create_trip(client)
        wait_until_settled(client, trip_id)
        items = client.get(f"/trips/{trip_id}/recommendations/flight").json()["items"]

        first = client.post(f"/trips/{trip_id}/recommendations/flight/{items[0]['id']}/select")
        second = client.post(
            f"/trips/{trip_id}/recommendations/flight/{items[1]['id']}/select",
            json={"selected_by": "bob", "rank": 1},
        )

        assert first.status_code == 200
        assert first.json()["selection"]["selected_by"] == "anonymous"
        assert second.status_code == 200
        listed = client.get(f"/trips/{trip_id}/recommendations/flight").json()["items"]
        assert [i["id"] for i in listed if i["selection"]["is_selected"]] == [items[1]["id"]]

        finalized = client.post(f"/trips/{trip_id}/finalize")
        assert finalized.status_code == 200
        assert finalized.json()["status"] == "finalized"
        assert finalized.json()["selections"]["flight"]["recommendation_id"] == items[1]["id"]

    def test_select_unknown_recommendation_is_400(self, client: TestClient) -> None:
        trip_id = create_trip(client)
        wait_until_settled(client, trip_id)

        response = client.post(f"/trips/{trip_id}/recommendations/flight/nope/select")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_recommendation"

    def test_rerun_while_planning_is_409(
        self,
        make_client: Callable[..., TestClient],
        static_provider: Any,
        flight_items: list[dict[str, Any]],
    ) -> None:
        client = make_client(
            providers={ProducerType.flight: static_provider(flight_items, delay=0.5)}
        )
        trip_id = create_trip(client, producers=["flight"])

        response = client.post(f"/trips/{trip_id}/rerun")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "conflicting_execution"
        wait_until_settled(client, trip_id)

    def test_rerun_of_finished_producer_while_another_runs_is_409(
        self,
        make_client: Callable[..., TestClient],
        static_provider: Any,
        flight_items: list[dict[str, Any]],
        dining_items: list[dict[str, Any]],
    ) -> None:
        client = make_client(
            providers={
                ProducerType.flight: static_provider(flight_items, delay=0.5),
                ProducerType.dining: static_provider(dining_items, name="dining"),
            }
        )
        trip_id = create_trip(client)
        deadline = time.monotonic() + 5.0
        while True:
            status = client.get(f"/trips/{trip_id}/status").json()
            if status["per_producer_status"]["dining"]["status"] == "completed":
                break
            assert time.monotonic() < deadline, "dining never completed"
            time.sleep(0.01)
        assert status["overall_status"] == "in_progress"

        response = client.post(f"/trips/{trip_id}/rerun", json={"producer_type": "dining"})

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "conflicting_execution"
        dining = client.get(f"/trips/{trip_id}/recommendations/dining")
        assert dining.status_code == 200
        assert dining.json()["total"] == 2
        wait_until_settled(client, trip_id)

    def test_rerun_accepted_then_replanned(self, client: TestClient) -> None:
        trip_id = create_trip(client)
        wait_until_settled(client, trip_id)

        response = client.post(
            f"/trips/{trip_id}/rerun", json={"producer_type": "flight", "reason": "retry"}
        )

        assert response.status_code == 202
        body = response.json()
        assert body == {
            "trip_id": trip_id,
            "status": "pending",
            "retriggered": ["flight"],
            "reason": "retry",
        }
        status = wait_until_settled(client, trip_id)
        assert status["per_producer_status"]["flight"]["status"] == "completed"
        # dining keeps its failed state since only flight was re-run
        assert status["overall_status"] == "partial"

    def test_cancel(self, client: TestClient) -> None:
        trip_id = create_trip(client, start=False)

        response = client.post(f"/trips/{trip_id}/cancel")

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert client.post(f"/trips/{trip_id}/rerun").status_code == 400
