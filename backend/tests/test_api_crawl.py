"""Tests for the crawl endpoints."""

import json

import pytest

URL = "https://example.com/board"
POSTS = json.dumps({"posts": [{"id": 1, "title": "First"}]})


@pytest.fixture
def crawl_ready(services, provider, fetcher):
    services.chat.persistence_policy = "raise"
    fetcher.fetch.return_value = "First"
    provider.reply_text = POSTS


def _create_site(client, **overrides):
    body = {"name": "Board", "url": URL, "xpath": "//main", "assistant_name": "default"}
    body.update(overrides)
    response = client.post("/api/crawling-sites", json=body)
    assert response.status_code == 201
    return response.json()


def test_crawl_json(client, crawl_ready):
    response = client.post(
        "/api/crawl", json={"assistantName": "default", "url": URL, "xpath": "//main"}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "gptResponse"
    assert data["data"] == {"posts": [{"id": 1, "title": "First"}]}


def test_crawl_event_stream(client, crawl_ready):
    response = client.post(
        "/api/crawl",
        json={"assistantName": "default", "url": URL, "xpath": "//main"},
        headers={"Accept": "text/event-stream"},
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")

    events = [
        json.loads(line[len("data: "):])
        for line in response.text.splitlines()
        if line.startswith("data: ")
    ]
    assert [e["status"] for e in events] == ["crawlingStarted", "crawlingCompleted", "gptResponse"]


def test_crawl_already_running(client, services, crawl_ready):
    services.crawler.status.try_begin(services.crawler.status.key_for("default", URL))

    response = client.post(
        "/api/crawl", json={"assistantName": "default", "url": URL, "xpath": "//main"}
    )
    assert response.status_code == 409


def test_crawl_fetch_failure(client, fetcher):
    fetcher.fetch.return_value = None
    response = client.post(
        "/api/crawl", json={"assistantName": "default", "url": URL, "xpath": "//main"}
    )
    assert response.status_code == 502


def test_crawl_status(client, services):
    services.crawler.status.try_begin("default-" + URL)
    data = client.get("/api/crawl/status").json()
    assert data["default-" + URL]["is_crawling"] is True


def test_site_crud(client):
    site = _create_site(client, interval_minutes=30)
    assert site["interval_minutes"] == 30
    assert site["last_crawled"] is None

    response = client.put(f"/api/crawling-sites/{site['id']}", json={"is_active": False})
    assert response.status_code == 200
    assert response.json()["is_active"] is False

    assert [s["id"] for s in client.get("/api/crawling-sites").json()] == [site["id"]]

    assert client.delete(f"/api/crawling-sites/{site['id']}").status_code == 204
    assert client.get("/api/crawling-sites").json() == []
    assert client.put(f"/api/crawling-sites/{site['id']}", json={"name": "x"}).status_code == 404
    assert client.delete(f"/api/crawling-sites/{site['id']}").status_code == 404


def test_schedule_crawling_and_records(client, crawl_ready):
    site = _create_site(client)

    response = client.post("/api/schedule-crawling")
    assert response.status_code == 200
    assert response.json()["results"] == [
        {"site_key": f"default-{URL}", "status": "crawled", "new_posts": 1}
    ]

    records = client.get("/api/crawling-data", params={"site_id": site["id"]}).json()
    assert len(records) == 1
    assert records[0]["payload"] == {"posts": [{"id": 1, "title": "First"}]}

    # Immediately again: not due
    results = client.post("/api/schedule-crawling").json()["results"]
    assert results[0]["status"] == "not_due"
