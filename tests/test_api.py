"""Tests for the HTTP API."""

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from rentalflow.api.main import app
from rentalflow.core.fulfillment_service import get_service
from rentalflow.core.models import OrderStatus, ScanType

STAFF_HEADERS = {
    "X-Forwarded-Email": "staff@a2.test",
    "X-Actor-Role": "FULFILLMENT_STAFF",
    "X-Actor-Companies": "*",
}
CLIENT_HEADERS = {
    "X-Forwarded-Email": "client@acme.test",
    "X-Actor-Role": "client",
    "X-Actor-Companies": "acme",
}
OUTSIDER_HEADERS = {
    "X-Forwarded-Email": "client@globex.test",
    "X-Actor-Role": "CLIENT",
    "X-Actor-Companies": "globex",
}


@pytest.fixture
def client(service):
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestMeta:
    """Test health and identity endpoints."""

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    def test_me_reads_forwarded_headers(self, client):
        response = client.get("/api/me", headers=CLIENT_HEADERS)

        assert response.status_code == 200
        assert response.json() == {
            "id": "client@acme.test",
            "role": "CLIENT",
            "companies": ["acme"],
            "is_authenticated": True,
        }

    def test_unknown_role_is_not_authenticated(self, client):
        headers = {**CLIENT_HEADERS, "X-Actor-Role": "INTERN"}
        assert client.get("/api/me", headers=headers).json()["is_authenticated"] is False


class TestOrderStatus:
    """Test POST /api/orders/{id}/status and the error mapping."""

    def test_confirm(self, client, make_asset, make_order, booking_count):
        order = make_order([(make_asset(total_quantity=2, tracking_method="BATCH"), 2)])

        response = client.post(
            f"/api/orders/{order.order_id}/status",
            json={"new_status": "CONFIRMED", "note": "Approved by events team"},
            headers=CLIENT_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "CONFIRMED"
        assert booking_count(order.order_id) == 1
        assert response.json()["is_terminal"] is False
        assert response.json()["allowed_next"] == []

    def test_response_lists_next_statuses_for_the_role(self, client, make_asset, make_order):
        order = make_order([(make_asset(), 1)], status=OrderStatus.CONFIRMED)

        response = client.post(
            f"/api/orders/{order.order_id}/status",
            json={"new_status": "IN_PREPARATION"},
            headers=STAFF_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["allowed_next"] == ["READY_FOR_DELIVERY"]

    def test_declined_order_is_terminal(self, client, make_asset, make_order):
        order = make_order([(make_asset(), 1)])

        response = client.post(
            f"/api/orders/{order.order_id}/status",
            json={"new_status": "DECLINED"},
            headers=CLIENT_HEADERS,
        )

        assert response.json()["status"] == "DECLINED"
        assert response.json()["is_terminal"] is True

    def test_missing_actor_is_401(self, client, make_asset, make_order):
        order = make_order([(make_asset(), 1)])
        response = client.post(
            f"/api/orders/{order.order_id}/status", json={"new_status": "CONFIRMED"}
        )
        assert response.status_code == 401

    def test_role_without_edge_is_403(self, client, make_asset, make_order):
        order = make_order([(make_asset(), 1)], status=OrderStatus.CONFIRMED)
        response = client.post(
            f"/api/orders/{order.order_id}/status",
            json={"new_status": "IN_PREPARATION"},
            headers=CLIENT_HEADERS,
        )
        assert response.status_code == 403

    def test_other_company_is_403(self, client, make_asset, make_order):
        order = make_order([(make_asset(), 1)])
        response = client.post(
            f"/api/orders/{order.order_id}/status",
            json={"new_status": "CONFIRMED"},
            headers=OUTSIDER_HEADERS,
        )
        assert response.status_code == 403

    def test_invalid_transition_is_400(self, client, make_asset, make_order):
        order = make_order([(make_asset(), 1)], status=OrderStatus.DRAFT)
        headers = {**STAFF_HEADERS, "X-Actor-Role": "ADMIN"}
        response = client.post(
            f"/api/orders/{order.order_id}/status",
            json={"new_status": "CLOSED"},
            headers=headers,
        )
        assert response.status_code == 400
        assert "Invalid state transition" in response.json()["detail"]

    def test_unknown_order_is_404(self, client):
        response = client.post(
            f"/api/orders/{uuid4()}/status",
            json={"new_status": "CONFIRMED"},
            headers=CLIENT_HEADERS,
        )
        assert response.status_code == 404

    def test_insufficient_availability_is_409(self, client, make_asset, make_order):
        order = make_order([(make_asset(total_quantity=1, condition="RED"), 1)])
        response = client.post(
            f"/api/orders/{order.order_id}/status",
            json={"new_status": "CONFIRMED"},
            headers=CLIENT_HEADERS,
        )
        assert response.status_code == 409

    def test_unknown_status_is_422(self, client, make_asset, make_order):
        order = make_order([(make_asset(), 1)])
        response = client.post(
            f"/api/orders/{order.order_id}/status",
            json={"new_status": "SHIPPED"},
            headers=CLIENT_HEADERS,
        )
        assert response.status_code == 422

    def test_status_history(self, client, make_asset, make_order):
        order = make_order([(make_asset(total_quantity=2, tracking_method="BATCH"), 1)])
        client.post(
            f"/api/orders/{order.order_id}/status",
            json={"new_status": "CONFIRMED", "note": "Go"},
            headers=CLIENT_HEADERS,
        )

        response = client.get(
            f"/api/orders/{order.order_id}/status-history", headers=CLIENT_HEADERS
        )

        assert response.status_code == 200
        [entry] = response.json()["history"]
        assert entry["from_status"] == "QUOTED"
        assert entry["status"] == "CONFIRMED"
        assert entry["notes"] == "Go"
        assert entry["updated_by"] == "client@acme.test"


class TestScanning:
    """Test the scanning endpoints."""

    def test_outbound_scan_and_complete(self, client, make_asset, make_order):
        asset = make_asset(total_quantity=3, tracking_method="BATCH", qr_code="API-BATCH")
        order = make_order([(asset, 3)], status=OrderStatus.IN_PREPARATION)

        response = client.post(
            f"/api/scanning/outbound/{order.order_id}/scan",
            json={"qr_code": "API-BATCH", "quantity": 2},
            headers=STAFF_HEADERS,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["event"]["scan_type"] == "OUTBOUND"
        assert body["asset_status"] == "OUT"
        assert body["progress"]["items_scanned"] == 2
        assert body["progress"]["can_complete"] is False

        early = client.post(
            f"/api/scanning/outbound/{order.order_id}/complete", headers=STAFF_HEADERS
        )
        assert early.status_code == 409

        client.post(
            f"/api/scanning/outbound/{order.order_id}/scan",
            json={"qr_code": "API-BATCH", "quantity": 1},
            headers=STAFF_HEADERS,
        )
        progress = client.get(
            f"/api/scanning/outbound/{order.order_id}/progress", headers=STAFF_HEADERS
        ).json()
        assert progress["percent_complete"] == 100
        assert progress["assets"][0]["remaining_quantity"] == 0

        done = client.post(
            f"/api/scanning/outbound/{order.order_id}/complete",
            json={"note": "All loaded"},
            headers=STAFF_HEADERS,
        )
        assert done.status_code == 200
        assert done.json()["status"] == "READY_FOR_DELIVERY"

    def test_over_scan_is_400(self, client, make_asset, make_order):
        asset = make_asset(qr_code="API-SINGLE")
        order = make_order([(asset, 1)], status=OrderStatus.IN_PREPARATION)
        url = f"/api/scanning/outbound/{order.order_id}/scan"

        first = client.post(url, json={"qr_code": "API-SINGLE"}, headers=STAFF_HEADERS)
        response = client.post(url, json={"qr_code": "API-SINGLE"}, headers=STAFF_HEADERS)

        assert first.status_code == 200

        assert response.status_code == 400
        assert "Already scanned: 1" in response.json()["detail"]

    def test_client_scan_is_403(self, client, make_asset, make_order):
        asset = make_asset(qr_code="API-CLIENT")
        order = make_order([(asset, 1)], status=OrderStatus.IN_PREPARATION)
        response = client.post(
            f"/api/scanning/outbound/{order.order_id}/scan",
            json={"qr_code": "API-CLIENT"},
            headers=CLIENT_HEADERS,
        )
        assert response.status_code == 403

    def test_inbound_without_condition_is_400(self, client, make_asset, make_order, add_scan):
        asset = make_asset(qr_code="API-IN")
        order = make_order([(asset, 1)], status=OrderStatus.AWAITING_RETURN)
        add_scan(order, asset, ScanType.OUTBOUND, 1)

        response = client.post(
            f"/api/scanning/inbound/{order.order_id}/scan",
            json={"qr_code": "API-IN"},
            headers=STAFF_HEADERS,
        )
        assert response.status_code == 400

    def test_negative_refurbishment_is_422(self, client, make_asset, make_order):
        order = make_order([(make_asset(qr_code="API-NEG"), 1)], status=OrderStatus.AWAITING_RETURN)
        response = client.post(
            f"/api/scanning/inbound/{order.order_id}/scan",
            json={"qr_code": "API-NEG", "condition": "RED", "refurb_days_estimate": -1},
            headers=STAFF_HEADERS,
        )
        assert response.status_code == 422

    def test_unknown_direction_is_422(self, client, make_asset, make_order):
        order = make_order([(make_asset(), 1)], status=OrderStatus.IN_PREPARATION)
        response = client.get(
            f"/api/scanning/sideways/{order.order_id}/progress", headers=STAFF_HEADERS
        )
        assert response.status_code == 422

    def test_scan_events_filtered_by_direction(self, client, make_asset, make_order):
        asset = make_asset(qr_code="API-EVENTS")
        order = make_order([(asset, 1)], status=OrderStatus.IN_PREPARATION)
        client.post(
            f"/api/scanning/outbound/{order.order_id}/scan",
            json={"qr_code": "API-EVENTS"},
            headers=STAFF_HEADERS,
        )

        outbound = client.get(
            f"/api/orders/{order.order_id}/scan-events",
            params={"direction": "outbound"},
            headers=STAFF_HEADERS,
        ).json()
        inbound = client.get(
            f"/api/orders/{order.order_id}/scan-events",
            params={"direction": "inbound"},
            headers=STAFF_HEADERS,
        ).json()

        assert outbound["total"] == 1
        assert inbound == {"events": [], "total": 0}


class TestAssets:
    """Test the asset endpoints."""

    def test_availability(self, client, make_asset, make_order, add_booking):
        asset = make_asset(total_quantity=5, tracking_method="BATCH")
        order = make_order([(asset, 2)], status=OrderStatus.CONFIRMED)
        add_booking(order, asset, 2)

        response = client.get(f"/api/assets/{asset.asset_id}/availability", headers=CLIENT_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["available"] == 3
        assert body["booked"] == 2
        assert body["start"] is None

    def test_availability_window(self, client, make_asset, make_order, add_booking):
        asset = make_asset(total_quantity=5, tracking_method="BATCH")
        order = make_order([(asset, 2)], status=OrderStatus.CONFIRMED)
        add_booking(order, asset, 2)

        response = client.get(
            f"/api/assets/{asset.asset_id}/availability",
            params={"start": "2026-07-01T00:00:00Z", "end": "2026-07-03T00:00:00Z"},
            headers=CLIENT_HEADERS,
        )

        # Bookings without a blocked window count for every window
        assert response.json()["booked"] == 2

    def test_half_open_window_is_400(self, client, make_asset):
        asset = make_asset()
        response = client.get(
            f"/api/assets/{asset.asset_id}/availability",
            params={"start": "2026-07-01T00:00:00Z"},
            headers=CLIENT_HEADERS,
        )
        assert response.status_code == 400

    def test_other_company_asset_is_403(self, client, make_asset):
        asset = make_asset()
        response = client.get(
            f"/api/assets/{asset.asset_id}/availability", headers=OUTSIDER_HEADERS
        )
        assert response.status_code == 403

    def test_unknown_asset_is_404(self, client):
        response = client.get(f"/api/assets/{uuid4()}/availability", headers=STAFF_HEADERS)
        assert response.status_code == 404

    def test_check_availability(self, client, make_asset, make_order, add_booking):
        tents = make_asset(total_quantity=4, tracking_method="BATCH", name="Tent")
        chairs = make_asset(total_quantity=50, tracking_method="BATCH")
        order = make_order([(tents, 3)], status=OrderStatus.CONFIRMED)
        add_booking(order, tents, 3)

        response = client.post(
            "/api/assets/check-availability",
            json={
                "items": [
                    {"asset_id": str(tents.asset_id), "quantity": 2},
                    {"asset_id": str(chairs.asset_id), "quantity": 40},
                ],
                "event_start": "2026-08-01T10:00:00Z",
                "event_end": "2026-08-02T22:00:00Z",
            },
            headers=CLIENT_HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {
            "all_available": False,
            "unavailable_items": [
                {
                    "asset_id": str(tents.asset_id),
                    "asset_name": "Tent",
                    "requested": 2,
                    "available": 1,
                }
            ],
        }

    def test_check_availability_all_fit(self, client, make_asset):
        asset = make_asset(total_quantity=2, tracking_method="BATCH")

        response = client.post(
            "/api/assets/check-availability",
            json={
                "items": [{"asset_id": str(asset.asset_id), "quantity": 2}],
                "event_start": "2026-08-01T10:00:00Z",
                "event_end": "2026-08-02T22:00:00Z",
            },
            headers=CLIENT_HEADERS,
        )

        assert response.json() == {"all_available": True, "unavailable_items": []}

    @pytest.mark.parametrize(
        "body,status_code",
        [
            ({"event_start": "2026-08-02T00:00:00Z", "event_end": "2026-08-01T00:00:00Z"}, 400),
            ({"event_start": "2026-08-01T00:00:00Z"}, 422),
        ],
    )
    def test_check_availability_rejects_bad_window(self, client, make_asset, body, status_code):
        asset = make_asset()
        body = {"items": [{"asset_id": str(asset.asset_id), "quantity": 1}], **body}

        response = client.post("/api/assets/check-availability", json=body, headers=CLIENT_HEADERS)

        assert response.status_code == status_code

    def test_check_availability_other_company_is_403(self, client, make_asset):
        asset = make_asset()
        response = client.post(
            "/api/assets/check-availability",
            json={
                "items": [{"asset_id": str(asset.asset_id), "quantity": 1}],
                "event_start": "2026-08-01T10:00:00Z",
                "event_end": "2026-08-02T22:00:00Z",
            },
            headers=OUTSIDER_HEADERS,
        )
        assert response.status_code == 403

    def test_scan_history(self, client, make_asset, make_order):
        asset = make_asset(total_quantity=2, qr_code="API-HISTORY")
        order = make_order([(asset, 1)], status=OrderStatus.IN_PREPARATION)
        client.post(
            f"/api/scanning/outbound/{order.order_id}/scan",
            json={"qr_code": "API-HISTORY"},
            headers=STAFF_HEADERS,
        )

        response = client.get(f"/api/assets/{asset.asset_id}/scan-history", headers=STAFF_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["qr_code"] == "API-HISTORY"
        assert [event["order_id"] for event in body["events"]] == [str(order.order_id)]
