from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from shortener import main


def shorten(client, **body):
    return client.post("/links", json=body)


class TestCreateLink:
    def test_create(self, client):
        response = shorten(client, destinationUrl="https://example.com/page")
        assert response.status_code == 201
        data = response.json()
        assert len(data["code"]) == 6
        assert data["shortUrl"] == f"https://short.ly/{data['code']}"
        assert data["destinationUrl"] == "https://example.com/page"
        assert data["isCustomAlias"] is False
        assert data["expiresAt"] is None

    def test_snake_case_body_accepted(self, client):
        response = shorten(client, destination_url="https://example.com/page", custom_alias="snake")
        assert response.status_code == 201
        assert response.json()["code"] == "snake"

    def test_invalid_url(self, client):
        response = shorten(client, destinationUrl="not-a-valid-url")
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidUrl"

    def test_missing_url(self, client):
        response = client.post("/links", json={})
        assert response.status_code == 422

    def test_custom_alias_taken(self, client):
        shorten(client, destinationUrl="https://example.com/1", customAlias="myalias")
        response = shorten(client, destinationUrl="https://example.com/2", customAlias="myalias")
        assert response.status_code == 409
        assert response.json()["error"] == "AlreadyTaken"

    def test_custom_alias_format(self, client):
        response = shorten(client, destinationUrl="https://example.com", customAlias="ab")
        assert response.status_code == 422
        assert response.json()["error"] == "InvalidFormat"

    def test_reserved_alias(self, client):
        response = shorten(client, destinationUrl="https://example.com", customAlias="api")
        assert response.status_code == 409
        assert response.json()["error"] == "Reserved"

    def test_with_expiration(self, client):
        future = (datetime.now(timezone.utc) + timedelta(days=7)).isoformat()
        response = shorten(client, destinationUrl="https://example.com", expiresAt=future)
        assert response.status_code == 201
        assert response.json()["expiresAt"] is not None


class TestRedirect:
    def test_redirect(self, client):
        code = shorten(client, destinationUrl="https://www.python.org/about/").json()["code"]
        response = client.get(f"/{code}", follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "https://www.python.org/about/"

    def test_not_found(self, client):
        response = client.get("/______", follow_redirects=False)
        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    def test_expired(self, client):
        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        code = shorten(client, destinationUrl="https://example.com", expiresAt=past).json()["code"]
        response = client.get(f"/{code}", follow_redirects=False)
        assert response.status_code == 410
        assert response.json()["error"] == "Expired"

    def test_deleted(self, client):
        code = shorten(client, destinationUrl="https://example.com").json()["code"]
        client.get(f"/{code}", follow_redirects=False)

        assert client.delete(f"/links/{code}").status_code == 204
        response = client.get(f"/{code}", follow_redirects=False)
        assert response.status_code == 410
        assert response.json()["error"] == "Deleted"

    def test_deleted_alias_not_reusable(self, client):
        shorten(client, destinationUrl="https://example.com", customAlias="promo")
        client.delete("/links/promo")
        response = shorten(client, destinationUrl="https://example.com/new", customAlias="promo")
        assert response.status_code == 409


class TestLinks:
    def test_get_link(self, client):
        code = shorten(client, destinationUrl="https://example.com", ownerId="42").json()["code"]
        response = client.get(f"/links/{code}")
        assert response.status_code == 200
        assert response.json()["ownerId"] == "42"
        assert response.json()["deletedAt"] is None

    def test_get_missing(self, client):
        assert client.get("/links/nothing").status_code == 404

    def test_delete_missing(self, client):
        response = client.delete("/links/nothing")
        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    def test_update_expiry(self, client):
        code = shorten(client, destinationUrl="https://example.com").json()["code"]
        assert client.get(f"/{code}", follow_redirects=False).status_code == 302

        past = (datetime.now(timezone.utc) - timedelta(minutes=5)).isoformat()
        response = client.put(f"/links/{code}/expiry", json={"expiresAt": past})
        assert response.status_code == 200
        assert client.get(f"/{code}", follow_redirects=False).status_code == 410

        client.put(f"/links/{code}/expiry", json={"expiresAt": None})
        assert client.get(f"/{code}", follow_redirects=False).status_code == 302

    def test_search(self, client):
        code = shorten(client, destinationUrl="https://example.com/find").json()["code"]
        shorten(client, destinationUrl="https://example.com/other")
        response = client.get("/links/search", params={"destinationUrl": "https://example.com/find"})
        assert response.status_code == 200
        assert [item["code"] for item in response.json()] == [code]


class TestStats:
    def test_stats(self, client, service):
        code = shorten(client, destinationUrl="https://example.com").json()["code"]
        for _ in range(3):
            client.get(f"/{code}", follow_redirects=False, headers={"Referer": "https://ref.example"})

        response = client.get(f"/links/{code}/stats")
        assert response.status_code == 200
        assert response.json()["totalClicks"] == 3
        assert response.json()["lastClickAt"] is not None

        service.recorder.flush()
        service.recorder.reconcile()
        assert client.get(f"/links/{code}/stats").json()["totalClicks"] == 3

    def test_failed_redirects_not_counted(self, client):
        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        code = shorten(client, destinationUrl="https://example.com", expiresAt=past).json()["code"]
        client.get(f"/{code}", follow_redirects=False)
        assert client.get(f"/links/{code}/stats").json()["totalClicks"] == 0

    def test_stats_not_found(self, client):
        assert client.get("/links/nothing/stats").status_code == 404


class TestLifecycle:
    def test_startup_and_shutdown_hooks(self):
        with TestClient(main.app) as lifecycle_client:
            assert main.scheduler.running
            code = shorten(lifecycle_client, destinationUrl="https://example.com/lifecycle").json()["code"]
            assert lifecycle_client.get(f"/{code}", follow_redirects=False).status_code == 302

        assert not main.scheduler.running
        assert main.service.recorder._queue.empty()
        assert main.service.recorder.stats(code).total_clicks == 1
