"""
Tests for the /api/assignment endpoints: envelopes, roles and scoping.
"""

import pytest

from shared.config.constants import EventType, WaiterStatus


class TestAuthentication:

    def test_missing_token(self, client, seed_hierarchy):
        response = client.get("/api/assignment/stats?branchId=10")
        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["statusCode"] == 401

    def test_waiter_cannot_manual_assign(self, client, seed_hierarchy, make_order, waiter_headers):
        order = make_order()
        response = client.post(
            "/api/assignment/manual-assign",
            json={"orderId": order.id, "waiterId": 302, "reason": "Mine"},
            headers=waiter_headers,
        )
        assert response.status_code == 403

    def test_other_branch_forbidden(self, client, seed_hierarchy, other_branch_headers):
        response = client.get("/api/assignment/queue?branchId=10", headers=other_branch_headers)
        assert response.status_code == 403


class TestManualAssign:

    def test_success_envelope(self, client, seed_hierarchy, make_order, manager_headers, transport):
        order = make_order()

        response = client.post(
            "/api/assignment/manual-assign",
            json={"orderId": order.id, "waiterId": 302, "reason": "Regular guest"},
            headers=manager_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Order assigned manually"
        assert body["data"]["waiterId"] == 302
        assert body["data"]["assignmentMethod"] == "manual"
        assert transport.events(EventType.ORDER_ASSIGNED)

    def test_at_capacity_message(self, client, seed_hierarchy, make_order, set_load, manager_headers):
        set_load(seed_hierarchy["waiters"][1], 3)
        order = make_order()

        response = client.post(
            "/api/assignment/manual-assign",
            json={"orderId": order.id, "waiterId": 302, "reason": "Override"},
            headers=manager_headers,
        )

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "message": "Waiter is at maximum capacity (3 orders)",
            "statusCode": 400,
        }

    def test_validation_errors_listed(self, client, seed_hierarchy, manager_headers):
        response = client.post(
            "/api/assignment/manual-assign",
            json={"orderId": 0, "reason": "  "},
            headers=manager_headers,
        )

        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Validation error"
        fields = {e["field"] for e in body["errors"]}
        assert {"orderId", "waiterId", "reason"} <= fields

    def test_unknown_order(self, client, seed_hierarchy, manager_headers):
        response = client.post(
            "/api/assignment/manual-assign",
            json={"orderId": 9999, "waiterId": 302, "reason": "Override"},
            headers=manager_headers,
        )
        assert response.status_code == 404
        assert response.json()["message"] == "Order with ID 9999 not found"


class TestOrderHooks:

    def test_auto_assign_then_release(self, client, seed_hierarchy, make_order, waiter_headers):
        order = make_order()

        response = client.post(f"/api/assignment/orders/{order.id}/auto-assign", headers=waiter_headers)
        assert response.status_code == 200
        assert response.json()["message"] == "Order assigned"
        assert response.json()["data"]["status"] == "assigned"

        response = client.post(
            f"/api/assignment/orders/{order.id}/release",
            json={"status": "completed"},
            headers=waiter_headers,
        )
        assert response.status_code == 200
        assert response.json()["data"]["released"] is True

        response = client.post(f"/api/assignment/orders/{order.id}/release", headers=waiter_headers)
        assert response.json()["message"] == "Order already released"

    def test_queued_when_everyone_is_full(self, client, seed_hierarchy, make_order, set_load, waiter_headers):
        for waiter in seed_hierarchy["waiters"]:
            set_load(waiter, 3)
        order = make_order()

        response = client.post(f"/api/assignment/orders/{order.id}/auto-assign", headers=waiter_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "No waiter available, order queued"
        assert body["data"]["position"] == 1
        assert body["data"]["estimatedWaitMinutes"] == 15

    def test_require_immediate_503(self, client, seed_hierarchy, make_order, set_load, waiter_headers):
        for waiter in seed_hierarchy["waiters"]:
            set_load(waiter, 3)
        order = make_order()

        response = client.post(
            f"/api/assignment/orders/{order.id}/auto-assign",
            json={"requireImmediate": True},
            headers=waiter_headers,
        )

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "30"
        assert response.json()["message"] == "No waiters available for assignment"

    def test_manual_method_rejected(self, client, seed_hierarchy, make_order, waiter_headers):
        order = make_order()
        response = client.post(
            f"/api/assignment/orders/{order.id}/auto-assign",
            json={"method": "manual"},
            headers=waiter_headers,
        )
        assert response.status_code == 400


class TestQueueEndpoints:

    @pytest.fixture
    def queued(self, seed_hierarchy, make_order, set_load, engine_for_api):
        for waiter in seed_hierarchy["waiters"]:
            set_load(waiter, 3)
        orders = [make_order(), make_order()]
        for order in orders:
            engine_for_api.automatic_assign(order.id)
        return orders

    def test_list(self, client, queued, manager_headers):
        response = client.get("/api/assignment/queue?branchId=10", headers=manager_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert [e["orderId"] for e in data["entries"]] == [o.id for o in queued]
        assert data["summary"]["totalQueued"] == 2

    def test_priority_update(self, client, queued, manager_headers):
        response = client.put(
            f"/api/assignment/queue/{queued[1].id}/priority",
            json={"priority": "urgent", "reason": "VIP"},
            headers=manager_headers,
        )

        assert response.status_code == 200
        assert response.json()["data"]["position"] == 1

    def test_remove(self, client, queued, manager_headers):
        response = client.delete(f"/api/assignment/queue/{queued[0].id}", headers=manager_headers)
        assert response.status_code == 200

        response = client.delete(f"/api/assignment/queue/{queued[0].id}", headers=manager_headers)
        assert response.status_code == 404

    def test_missing_scope_for_manager(self, client, seed_hierarchy, manager_headers):
        response = client.get("/api/assignment/queue", headers=manager_headers)
        assert response.status_code == 400
        assert response.json()["message"] == "hotelId or branchId is required"


class TestWaiterEndpoints:

    def test_available_waiters(self, client, seed_hierarchy, manager_headers):
        response = client.get("/api/assignment/waiters/available?branchId=10", headers=manager_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert [w["id"] for w in data["waiters"]] == [301, 302, 303]
        assert data["summary"]["totalCapacity"] == 9

    def test_available_waiters_lists_only_on_shift(self, client, db_session, seed_hierarchy, manager_headers, set_load):
        w1, w2, w3 = seed_hierarchy["waiters"]
        w1.status = WaiterStatus.SUSPENDED
        w2.is_available = False
        db_session.commit()

        response = client.get("/api/assignment/waiters/available?branchId=10", headers=manager_headers)
        assert [w["id"] for w in response.json()["data"]["waiters"]] == [303]

        set_load(w3, 3)
        response = client.get("/api/assignment/waiters/available?branchId=10", headers=manager_headers)
        (listed,) = response.json()["data"]["waiters"]
        assert listed["id"] == 303
        assert listed["canTakeOrders"] is False
        assert listed["remainingCapacity"] == 0

    def test_waiter_toggles_own_availability(self, client, seed_hierarchy, waiter_headers, transport):
        response = client.put(
            "/api/assignment/waiters/301/availability",
            json={"isAvailable": False, "reason": "Break", "status": "on_break"},
            headers=waiter_headers,
        )

        assert response.status_code == 200
        assert response.json()["data"]["waiter"]["isAvailable"] is False
        assert transport.events(EventType.WAITER_AVAILABILITY_CHANGED)

    def test_waiter_cannot_change_capacity(self, client, seed_hierarchy, waiter_headers):
        response = client.put(
            "/api/assignment/waiters/301/availability",
            json={"isAvailable": True, "maxOrdersCapacity": 8},
            headers=waiter_headers,
        )
        assert response.status_code == 403

    def test_waiter_cannot_touch_colleague(self, client, seed_hierarchy, waiter_headers):
        response = client.put(
            "/api/assignment/waiters/302/availability",
            json={"isAvailable": False},
            headers=waiter_headers,
        )
        assert response.status_code == 403

    def test_manager_changes_capacity(self, client, seed_hierarchy, manager_headers):
        response = client.put(
            "/api/assignment/waiters/302/availability",
            json={"isAvailable": True, "maxOrdersCapacity": 6},
            headers=manager_headers,
        )
        assert response.status_code == 200
        assert response.json()["data"]["waiter"]["maxCapacity"] == 6

    def test_performance(self, client, seed_hierarchy, make_order, engine_for_api, waiter_headers):
        order = make_order(total_cents=4000)
        engine_for_api.manual_assign(order.id, 301, reason="Setup")
        engine_for_api.release_on_terminal(order.id)

        response = client.get("/api/assignment/waiters/301/performance?days=7", headers=waiter_headers)

        assert response.status_code == 200
        summary = response.json()["data"]["summary"]
        assert summary["totalOrders"] == 1
        assert summary["completedOrders"] == 1
        assert summary["totalRevenue"] == 4000


class TestSystemEndpoints:

    def test_health(self, client, seed_hierarchy, admin_headers):
        response = client.get("/api/assignment/system/health", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["database"]["connected"] is True
        assert data["status"] in ("healthy", "degraded")

    def test_metrics_rejects_inverted_period(self, client, seed_hierarchy, admin_headers):
        response = client.get(
            "/api/assignment/system/metrics?startDate=2026-02-01T00:00:00Z&endDate=2026-01-01T00:00:00Z",
            headers=admin_headers,
        )
        assert response.status_code == 400

    def test_reset_all_requires_super_admin(self, client, seed_hierarchy, admin_headers, super_admin_headers):
        response = client.post("/api/assignment/system/reset-round-robin", json={}, headers=admin_headers)
        assert response.status_code == 403

        response = client.post("/api/assignment/system/reset-round-robin", json={}, headers=super_admin_headers)
        assert response.status_code == 200

    def test_reset_branch_as_admin(self, client, seed_hierarchy, admin_headers):
        response = client.post(
            "/api/assignment/system/reset-round-robin",
            json={"branchId": 10},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["data"]["branchId"] == 10

    def test_force_monitoring_super_admin_only(self, client, seed_hierarchy, admin_headers, super_admin_headers):
        response = client.post("/api/assignment/system/force-monitoring", headers=admin_headers)
        assert response.status_code == 403

        response = client.post("/api/assignment/system/force-monitoring", headers=super_admin_headers)
        assert response.status_code == 200
        assert response.json()["data"]["skipped"] is False


class TestHierarchyEndpoints:

    def test_valid_chain(self, client, seed_hierarchy, admin_headers):
        response = client.get("/api/assignment/validate-hierarchy/1/10", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["data"]["validation"] == {"isValid": True, "adminId": 100}

    def test_staff_tree(self, client, seed_hierarchy, admin_headers):
        response = client.get("/api/assignment/staff-hierarchy/1/10", headers=admin_headers)

        data = response.json()["data"]
        managers = data["hierarchyStructure"]["managers"]
        assert managers[0]["id"] == 200
        assert [w["id"] for w in managers[0]["waiters"]] == [301, 302, 303]
        assert data["totalValidWaiters"] == 3

    def test_waiters_cannot_read(self, client, seed_hierarchy, waiter_headers):
        response = client.get("/api/assignment/validate-hierarchy/1", headers=waiter_headers)
        assert response.status_code == 403


class TestSimulation:

    def test_dry_run(self, client, seed_hierarchy, manager_headers, transport):
        response = client.post(
            "/api/assignment/test-assignment",
            json={"hotelId": 1, "branchId": 10, "testType": "load-balance"},
            headers=manager_headers,
        )

        assert response.status_code == 200
        results = response.json()["data"]["testResults"]
        assert results["outcome"] == "assigned"
        assert results["method"] == "load-balancing"
        assert transport.messages == []


@pytest.fixture
def engine_for_api(db_session, publisher, locks):
    from rest_api.services.assignment import AssignmentEngine

    return AssignmentEngine(db_session, publisher, locks)
