"""
API tests for main.py routes, using TestClient with mongomock in place of
MongoDB and a fixed clock (Monday 2026-10-19, 08:30 Lagos).
"""
from datetime import timedelta

import pytest

from database import to_millis
from schemas import TransitionEvent, FacilityStatus
from tests.conftest import lagos


def headers(actor_id):
    return {"X-Actor-Id": actor_id}


@pytest.fixture
def owner(client):
    return client.post("/api/users", json={"username": "ada", "phone": "0800"}).json()


@pytest.fixture
def shop(client, owner):
    resp = client.post("/api/facilities", json={"name": "Mama Put", "type": "Food"}, headers=headers(owner["id"]))
    assert resp.status_code == 200
    return resp.json()


@pytest.fixture
def cashier(client, owner, shop):
    resp = client.post(f"/api/facilities/{shop['id']}/staff",
                       json={"username": "bola", "position": "Cashier", "can_add_items": False},
                       headers=headers(owner["id"]))
    return resp.json()


class TestHealth:
    def test_root(self, client):
        assert client.get("/").status_code == 200

    def test_database_diagnostics(self, client):
        assert client.get("/test").json()["connection_status"] == "Connected"


class TestFacilities:
    def test_register_links_owner(self, client, owner, shop, mongo_db):
        assert shop["code"].startswith("MAMA-")
        assert shop["contact"] == "0800"
        assert mongo_db["user"].find_one({"_id": owner["id"]})["facility_id"] == shop["id"]

    def test_register_requires_actor(self, client):
        assert client.post("/api/facilities", json={"name": "X"}).status_code == 401

    def test_one_facility_per_owner(self, client, owner, shop):
        resp = client.post("/api/facilities", json={"name": "Again"}, headers=headers(owner["id"]))
        assert resp.status_code == 409

    def test_get_and_list(self, client, shop):
        assert client.get(f"/api/facilities/{shop['id']}").json()["name"] == "Mama Put"
        assert len(client.get("/api/facilities").json()) == 1
        assert client.get("/api/facilities/nope").status_code == 404

    def test_search(self, client, shop):
        assert [f["id"] for f in client.get("/api/search", params={"q": "mama"}).json()] == [shop["id"]]
        assert client.get("/api/search", params={"q": "zzz"}).json() == []


class TestStatus:
    def test_manual_toggle_logs_history(self, client, owner, shop):
        resp = client.post(f"/api/facilities/{shop['id']}/status", json={"is_open": True},
                           headers=headers(owner["id"]))
        assert resp.json() == {"is_open": True}
        history = client.get(f"/api/facilities/{shop['id']}/history", headers=headers(owner["id"])).json()
        assert len(history) == 1
        assert history[0]["actor"] == "manual:ada"
        assert history[0]["new_state"] == "Open"
        assert history[0]["action"] == "Opened Facility"

    def test_staff_toggle_attributed_to_staff(self, client, owner, shop, cashier):
        client.post(f"/api/facilities/{shop['id']}/status", json={"is_open": True}, headers=headers(cashier["id"]))
        history = client.get(f"/api/facilities/{shop['id']}/history", headers=headers(owner["id"])).json()
        assert history[0]["actor"] == "manual:bola"

    def test_same_state_not_logged(self, client, owner, shop):
        client.post(f"/api/facilities/{shop['id']}/status", json={"is_open": False}, headers=headers(owner["id"]))
        assert client.get(f"/api/facilities/{shop['id']}/history", headers=headers(owner["id"])).json() == []

    def test_stranger_cannot_toggle(self, client, shop):
        stranger = client.post("/api/users", json={"username": "eve"}).json()
        resp = client.post(f"/api/facilities/{shop['id']}/status", json={"is_open": True},
                           headers=headers(stranger["id"]))
        assert resp.status_code == 403

    def test_status_note(self, client, owner, shop):
        resp = client.put(f"/api/facilities/{shop['id']}/status-note", json={"note": " Back at 2pm "},
                          headers=headers(owner["id"]))
        assert resp.json() == {"current_status": "Back at 2pm"}


class TestHoursAndAutoMode:
    def test_scheduler_opens_at_boundary(self, client, owner, shop, clock):
        hours = [{"day": "Monday", "open": "09:00", "close": "17:00", "enabled": True}]
        resp = client.put(f"/api/facilities/{shop['id']}/hours",
                          json={"business_hours": hours, "is_automatic": True}, headers=headers(owner["id"]))
        assert resp.status_code == 200

        assert client.post("/api/scheduler/tick").json()["status_changed"] == []
        clock.now = lagos(2026, 10, 19, 9, 0)
        assert client.post("/api/scheduler/tick").json()["status_changed"] == [shop["id"]]
        assert client.get(f"/api/facilities/{shop['id']}").json()["is_open"] is True

        history = client.get(f"/api/facilities/{shop['id']}/history", headers=headers(owner["id"])).json()
        assert [(h["actor"], h["new_state"]) for h in history] == [("system:auto-mode", "Open")]

    def test_duplicate_days_rejected(self, client, owner, shop):
        hours = [{"day": "Monday"}, {"day": "Monday"}]
        resp = client.put(f"/api/facilities/{shop['id']}/hours",
                          json={"business_hours": hours, "is_automatic": True}, headers=headers(owner["id"]))
        assert resp.status_code == 400

    def test_bad_time_rejected(self, client, owner, shop):
        hours = [{"day": "Monday", "open": "9am", "close": "17:00"}]
        resp = client.put(f"/api/facilities/{shop['id']}/hours",
                          json={"business_hours": hours, "is_automatic": False}, headers=headers(owner["id"]))
        assert resp.status_code == 422

    def test_staff_cannot_change_hours(self, client, shop, cashier):
        resp = client.put(f"/api/facilities/{shop['id']}/hours",
                          json={"business_hours": [], "is_automatic": True}, headers=headers(cashier["id"]))
        assert resp.status_code == 403

    def test_within_hours_flag(self, client, owner, shop, clock):
        hours = [{"day": "Monday", "open": "08:00", "close": "17:00"}]
        client.put(f"/api/facilities/{shop['id']}/hours",
                   json={"business_hours": hours, "is_automatic": False}, headers=headers(owner["id"]))
        assert client.get(f"/api/facilities/{shop['id']}").json()["within_hours"] is True


class TestCatalog:
    def add(self, client, shop, owner, name="Jollof"):
        return client.post(f"/api/facilities/{shop['id']}/items", json={"name": name},
                           headers=headers(owner["id"])).json()

    def test_add_and_list_sorted(self, client, owner, shop):
        self.add(client, shop, owner, "Zobo")
        self.add(client, shop, owner, "Akara")
        names = [i["name"] for i in client.get(f"/api/facilities/{shop['id']}/items").json()]
        assert names == ["Akara", "Zobo"]

    def test_staff_without_catalog_permission(self, client, shop, cashier):
        resp = client.post(f"/api/facilities/{shop['id']}/items", json={"name": "X"},
                           headers=headers(cashier["id"]))
        assert resp.status_code == 403

    def test_restock_timer_round_trip(self, client, owner, shop, clock):
        item = self.add(client, shop, owner)
        target = clock.now + timedelta(hours=2, minutes=15)
        resp = client.post(f"/api/facilities/{shop['id']}/items/{item['id']}/unavailable",
                           json={"restock_at": to_millis(target)}, headers=headers(owner["id"]))
        body = resp.json()
        assert body["available"] is False
        assert body["restock_at"] == to_millis(target)
        assert body["countdown"] == "2 Hours, 15 Mins"

        clock.now = target
        assert client.post("/api/scheduler/tick").json()["restocked"] == [shop["id"]]
        [stored] = client.get(f"/api/facilities/{shop['id']}/items").json()
        assert stored["available"] is True
        assert stored["restock_at"] is None

    def test_invalid_restock_target_rejected(self, client, owner, shop, mongo_db):
        item = self.add(client, shop, owner)
        resp = client.post(f"/api/facilities/{shop['id']}/items/{item['id']}/unavailable",
                           json={"restock_at": "next tuesday"}, headers=headers(owner["id"]))
        assert resp.status_code == 400
        stored = mongo_db["facility"].find_one({"_id": shop["id"]})["items"][0]
        assert stored["available"] is True
        assert stored["restock_at"] is None

    def test_manual_restock_clears_timer(self, client, owner, shop, clock):
        item = self.add(client, shop, owner)
        client.post(f"/api/facilities/{shop['id']}/items/{item['id']}/unavailable",
                    json={"restock_at": to_millis(clock.now + timedelta(days=3))}, headers=headers(owner["id"]))
        body = client.post(f"/api/facilities/{shop['id']}/items/{item['id']}/restock",
                           headers=headers(owner["id"])).json()
        assert body["available"] is True
        assert body["restock_at"] is None
        assert body["countdown"] is None

    def test_out_of_stock_without_timer(self, client, owner, shop):
        item = self.add(client, shop, owner)
        body = client.post(f"/api/facilities/{shop['id']}/items/{item['id']}/unavailable",
                           json={}, headers=headers(owner["id"])).json()
        assert body["available"] is False
        assert body["countdown"] is None

    def test_delete(self, client, owner, shop):
        item = self.add(client, shop, owner)
        assert client.delete(f"/api/facilities/{shop['id']}/items/{item['id']}",
                             headers=headers(owner["id"])).status_code == 200
        assert client.get(f"/api/facilities/{shop['id']}/items").json() == []
        assert client.delete(f"/api/facilities/{shop['id']}/items/{item['id']}",
                             headers=headers(owner["id"])).status_code == 404


class TestHistory:
    def test_listing_purges_old_events(self, client, owner, shop, clock, mongo_db):
        for days in (1, 29, 31, 44):
            event = TransitionEvent(facility_id=shop["id"], occurred_at=clock.now - timedelta(days=days),
                                    new_state=FacilityStatus.OPEN, actor="system:auto-mode")
            mongo_db["transition_log"].update_one({"_id": shop["id"]},
                                                  {"$push": {"events": event.model_dump(mode="json")}},
                                                  upsert=True)
        history = client.get(f"/api/facilities/{shop['id']}/history", headers=headers(owner["id"])).json()
        assert len(history) == 2
        assert len(mongo_db["transition_log"].find_one({"_id": shop["id"]})["events"]) == 2

    def test_clear_requires_confirmation(self, client, owner, shop):
        client.post(f"/api/facilities/{shop['id']}/status", json={"is_open": True}, headers=headers(owner["id"]))
        assert client.delete(f"/api/facilities/{shop['id']}/history",
                             headers=headers(owner["id"])).status_code == 400
        assert client.delete(f"/api/facilities/{shop['id']}/history", params={"confirm": "true"},
                             headers=headers(owner["id"])).status_code == 200
        assert client.get(f"/api/facilities/{shop['id']}/history", headers=headers(owner["id"])).json() == []

    def test_staff_cannot_clear(self, client, shop, cashier):
        resp = client.delete(f"/api/facilities/{shop['id']}/history", params={"confirm": "true"},
                             headers=headers(cashier["id"]))
        assert resp.status_code == 403


class TestCustomers:
    def test_favorites(self, client, shop):
        user = client.post("/api/users", json={"username": "tunde"}).json()
        url = f"/api/users/{user['id']}/favorites/{shop['id']}"
        assert client.post(url, headers=headers(user["id"])).json()["is_favorite"] is True
        assert [f["id"] for f in client.get(f"/api/users/{user['id']}/favorites").json()] == [shop["id"]]
        assert client.post(url, headers=headers(user["id"])).json()["is_favorite"] is False

    def test_cannot_edit_others_favorites(self, client, owner, shop):
        user = client.post("/api/users", json={"username": "tunde"}).json()
        resp = client.post(f"/api/users/{user['id']}/favorites/{shop['id']}", headers=headers(owner["id"]))
        assert resp.status_code == 403

    def test_duplicate_username(self, client, owner):
        assert client.post("/api/users", json={"username": "ada"}).status_code == 409

    def test_newest_comment_replaces_previous(self, client, shop):
        user = client.post("/api/users", json={"username": "tunde"}).json()
        url = f"/api/facilities/{shop['id']}/comments"
        client.post(url, json={"text": "Slow service"}, headers=headers(user["id"]))
        client.post(url, json={"text": "Much better now"}, headers=headers(user["id"]))
        comments = client.get(url).json()
        assert [c["text"] for c in comments] == ["Much better now"]

    def test_discover_lists_available_items_of_open_facilities(self, client, owner, shop):
        client.post(f"/api/facilities/{shop['id']}/items", json={"name": "Jollof"}, headers=headers(owner["id"]))
        assert client.get("/api/discover").json() == []
        client.post(f"/api/facilities/{shop['id']}/status", json={"is_open": True}, headers=headers(owner["id"]))
        [entry] = client.get("/api/discover", params={"q": "jol"}).json()
        assert entry["item"]["name"] == "Jollof"


class TestStaffAndAttendance:
    @pytest.fixture
    def shift(self, client, owner, shop):
        return client.post(f"/api/facilities/{shop['id']}/shifts",
                           json={"name": "Morning", "start": "08:00", "end": "16:00"},
                           headers=headers(owner["id"])).json()

    def test_staff_gets_unique_code(self, cashier):
        assert len(cashier["unique_code"]) == 6

    def test_duplicate_staff_username(self, client, owner, shop, cashier):
        resp = client.post(f"/api/facilities/{shop['id']}/staff", json={"username": "bola"},
                           headers=headers(owner["id"]))
        assert resp.status_code == 409

    def test_update_permissions(self, client, owner, shop, cashier):
        resp = client.patch(f"/api/facilities/{shop['id']}/staff/{cashier['id']}",
                            json={"can_add_items": True}, headers=headers(owner["id"]))
        assert resp.json()["can_add_items"] is True
        assert resp.json()["position"] == "Cashier"

    def test_shift_duration(self, shift):
        assert shift["duration_hours"] == 8.0

    def test_register_day(self, client, owner, shop, cashier, shift, clock):
        client.patch(f"/api/facilities/{shop['id']}/staff/{cashier['id']}",
                     json={"eligible_shifts": [shift["id"]]}, headers=headers(owner["id"]))
        base = f"/api/facilities/{shop['id']}/attendance/{cashier['id']}"

        clock.now = lagos(2026, 10, 19, 8, 0)
        rec = client.post(f"{base}/in", headers=headers(owner["id"])).json()
        assert rec["status"] == "Present"
        assert client.post(f"{base}/in", headers=headers(owner["id"])).status_code == 409

        on_duty = client.get(f"/api/facilities/{shop['id']}/on-duty", headers=headers(owner["id"])).json()
        assert [s["username"] for s in on_duty] == ["bola"]

        clock.now = lagos(2026, 10, 19, 12, 0)
        client.post(f"{base}/break_start", headers=headers(owner["id"]))
        clock.now = lagos(2026, 10, 19, 12, 30)
        rec = client.post(f"{base}/break_end", json={"approved": True}, headers=headers(owner["id"])).json()
        assert rec["breaks"][0]["approved"] is True

        clock.now = lagos(2026, 10, 19, 16, 0)
        assert client.post(f"{base}/out", headers=headers(owner["id"])).json()["status"] == "Sign Out"
        client.put(f"{base}/overtime", json={"minutes": 30}, headers=headers(owner["id"]))

        stats = client.get(f"/api/facilities/{shop['id']}/attendance/stats", params={"month": "2026-10"},
                           headers=headers(owner["id"])).json()
        assert stats == [{
            "staff_id": cashier["id"], "username": "bola", "position": "Cashier",
            "expected_hours": 8.0, "actual_hours": 8.5, "penalty_minutes": 0, "rating": "Excellent",
        }]

    def test_sign_out_without_sign_in(self, client, owner, shop, cashier):
        resp = client.post(f"/api/facilities/{shop['id']}/attendance/{cashier['id']}/out",
                           headers=headers(owner["id"]))
        assert resp.status_code == 409

    def test_unknown_action(self, client, owner, shop, cashier):
        resp = client.post(f"/api/facilities/{shop['id']}/attendance/{cashier['id']}/dance",
                           headers=headers(owner["id"]))
        assert resp.status_code == 400

    def test_register_needs_permission(self, client, shop, cashier):
        resp = client.post(f"/api/facilities/{shop['id']}/attendance/{cashier['id']}/in",
                           headers=headers(cashier["id"]))
        assert resp.status_code == 403

    def test_clear_month(self, client, owner, shop, cashier):
        client.post(f"/api/facilities/{shop['id']}/attendance/{cashier['id']}/absent", headers=headers(owner["id"]))
        url = f"/api/facilities/{shop['id']}/attendance"
        assert client.delete(url, params={"month": "2026-10"}, headers=headers(owner["id"])).status_code == 400
        resp = client.delete(url, params={"month": "2026-10", "confirm": "true"}, headers=headers(owner["id"]))
        assert resp.json() == {"deleted": 1}


class TestAdmin:
    def test_stats_require_admin(self, client, owner, shop):
        assert client.get("/api/admin/stats", headers=headers(owner["id"])).status_code == 403

    def test_stats(self, client, owner, shop, mongo_db):
        mongo_db["user"].insert_one({"_id": "root", "id": "root", "username": "root", "is_admin": True})
        client.post(f"/api/facilities/{shop['id']}/status", json={"is_open": True}, headers=headers(owner["id"]))
        stats = client.get("/api/admin/stats", headers=headers("root")).json()
        assert stats["total_facilities"] == 1
        assert stats["open_facilities"] == 1
        assert stats["total_events"] == 1
        assert stats["categories"] == [["Food", 1]]
