import unittest

from fastapi.testclient import TestClient

from newswire.app import create_app
from newswire.db import InMemoryDbClient
from newswire.dependencies import get_db_client, get_publisher
from newswire.publisher import InMemoryPublisher


class BackendApiTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.publisher = InMemoryPublisher()
        app = create_app()
        app.dependency_overrides[get_db_client] = lambda: self.db
        app.dependency_overrides[get_publisher] = lambda: self.publisher
        self.client = TestClient(app)

    def create_project(self, owner_id=1, topic="renewable energy"):
        response = self.client.post(
            "/api/projects",
            json={"owner_id": owner_id, "name": "Energy", "topic": topic},
        )
        self.assertEqual(response.status_code, 201)
        return response.json()

    def test_project_crud(self):
        project = self.create_project()
        self.assertEqual(project["member_count"], 1)

        response = self.client.patch(
            f"/api/projects/{project['id']}", json={"description": "watch list"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["description"], "watch list")

        listed = self.client.get("/api/projects", params={"owner_id": 1}).json()
        self.assertEqual([p["id"] for p in listed], [project["id"]])

        self.assertEqual(self.client.delete(f"/api/projects/{project['id']}").status_code, 204)
        self.assertEqual(self.client.get(f"/api/projects/{project['id']}").status_code, 404)

    def test_project_limit_is_forbidden(self):
        for _ in range(3):
            self.create_project(owner_id=5)
        response = self.client.post(
            "/api/projects", json={"owner_id": 5, "name": "Fourth", "topic": "x"}
        )
        self.assertEqual(response.status_code, 403)

    def test_keyword_lifecycle(self):
        project = self.create_project()
        url = f"/api/projects/{project['id']}/keywords"

        created = self.client.post(url, json={"content": "Solar"})
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["content"], "solar")

        duplicate = self.client.post(url, json={"content": "SOLAR"})
        self.assertEqual(duplicate.status_code, 400)

        keyword_id = created.json()["id"]
        self.assertEqual(self.client.delete(f"{url}/{keyword_id}").status_code, 204)
        self.assertEqual(self.client.get(url).json(), [])

        again = self.client.post(url, json={"content": "solar"})
        self.assertEqual(again.status_code, 201)
        self.assertEqual(again.json()["id"], keyword_id)

        self.assertEqual(self.client.post("/api/projects/999/keywords", json={"content": "x"}).status_code, 404)

    def test_mark_processed_reports_cycle_reset(self):
        project = self.create_project()
        url = f"/api/projects/{project['id']}/keywords"
        first = self.client.post(url, json={"content": "a"}).json()
        second = self.client.post(url, json={"content": "b"}).json()

        response = self.client.post(f"/api/admin/keywords/{first['id']}/processed")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["cycle_reset"])

        response = self.client.post(f"/api/admin/keywords/{second['id']}/processed")
        self.assertTrue(response.json()["cycle_reset"])
        self.assertFalse(response.json()["keyword"]["processed"])

        self.assertEqual(self.client.post("/api/admin/keywords/999/processed").status_code, 404)

    def test_news_flow(self):
        project = self.create_project()
        keyword = self.client.post(
            f"/api/projects/{project['id']}/keywords", json={"content": "solar"}
        ).json()
        payload = {
            "keyword_id": keyword["id"],
            "url": "https://example.com/story",
            "title": "Solar record",
            "summary": "panels",
            "source": "reuters",
            "published_date": 1700000000.0,
        }
        created = self.client.post("/api/admin/news", json=payload)
        self.assertEqual(created.status_code, 201)
        self.assertEqual(self.client.post("/api/admin/news", json=payload).status_code, 409)

        exists = self.client.get("/api/admin/news/exists", params={"url": "https://example.com/story"})
        self.assertTrue(exists.json()["exists"])

        page = self.client.get(
            "/api/news",
            params={"project_id": project["id"], "date_from": "2023-11-14", "date_to": "2023-11-14"},
        ).json()
        self.assertEqual(page["total"], 1)
        self.assertEqual(self.client.get("/api/news/sources", params={"project_id": project["id"]}).json(), {"sources": ["reuters"]})

        saved = self.client.post(
            f"/api/news/{created.json()['id']}/save", json={"project_id": project["id"]}
        )
        self.assertEqual(saved.status_code, 201)
        saved_id = saved.json()["id"]
        self.assertEqual(self.client.get("/api/news", params={"project_id": project["id"]}).json()["total"], 0)

        updated = self.client.patch(f"/api/saved-news/{saved_id}", json={"category": "energy"})
        self.assertEqual(updated.json()["category"], "energy")

        listed = self.client.get(
            "/api/saved-news", params={"project_id": project["id"], "categories": "energy,other"}
        ).json()
        self.assertEqual(listed["total"], 1)
        self.assertEqual(listed["data"][0]["url"], "https://example.com/story")

        self.assertEqual(self.client.delete(f"/api/saved-news/{saved_id}").status_code, 204)
        self.assertEqual(self.client.delete(f"/api/saved-news/{saved_id}").status_code, 404)

    def test_saved_news_patch_with_null_keeps_values(self):
        project = self.create_project()
        keyword = self.db.add_keyword(project["id"], "solar")
        news = self.db.create_news(keyword.id, "https://example.com/story", "Solar record", "", "reuters")
        saved_id = self.client.post(
            f"/api/news/{news.id}/save", json={"project_id": project["id"]}
        ).json()["id"]

        response = self.client.patch(f"/api/saved-news/{saved_id}", json={"views": None})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["views"], 0)

        response = self.client.patch(f"/api/saved-news/{saved_id}", json={"title": None, "views": 2})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["title"], "Solar record")
        self.assertEqual(response.json()["views"], 2)

    def test_urls_are_stored_and_published_as_given(self):
        project = self.create_project()
        keyword = self.client.post(
            f"/api/projects/{project['id']}/keywords", json={"content": "solar"}
        ).json()

        created = self.client.post(
            "/api/admin/news",
            json={"keyword_id": keyword["id"], "url": "https://example.com", "title": "Home", "source": "x"},
        )
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["url"], "https://example.com")
        exists = self.client.get("/api/admin/news/exists", params={"url": "https://example.com"})
        self.assertTrue(exists.json()["exists"])

        source = self.client.post(
            f"/api/projects/{project['id']}/sources", json={"url": "https://Example.com"}
        )
        self.assertEqual(source.json()["url"], "https://Example.com")
        self.client.post("/api/admin/schedules/run", json={"cron": "0 9 * * *"})
        self.assertEqual(self.publisher.messages("rss_atom")[0]["feed_url"], "https://Example.com")

        bad = self.client.post(f"/api/projects/{project['id']}/sources", json={"url": "not a url"})
        self.assertEqual(bad.status_code, 422)

    def test_run_schedule(self):
        project = self.create_project()
        self.client.post(f"/api/projects/{project['id']}/keywords", json={"content": "solar"})
        self.client.post(
            f"/api/projects/{project['id']}/sources", json={"url": "https://example.com/feed.xml"}
        )

        response = self.client.post("/api/admin/schedules/run", json={"cron": "0 * * * *"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["published"], 1)
        self.assertEqual(self.publisher.messages("searcher")[0]["keyword"], "solar")

        response = self.client.post("/api/admin/schedules/run", json={"cron": "0 9 * * *"})
        self.assertEqual(self.publisher.messages("rss_atom")[0]["feed_url"], "https://example.com/feed.xml")

        response = self.client.post("/api/admin/schedules/run", json={"cron": "bogus"})
        self.assertFalse(response.json()["handled"])


if __name__ == "__main__":
    unittest.main()
