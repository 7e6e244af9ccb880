from __future__ import annotations

import os
import unittest

from rixdu import create_app
from rixdu.extensions import db
from rixdu.models import Category, User
from rixdu.utils.jwt_utils import create_token


class CatalogRoutesTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._prev_db_uri = os.getenv("SQLALCHEMY_DATABASE_URI")
        cls._prev_db_url = os.getenv("DATABASE_URL")
        db_uri = "sqlite:///:memory:"
        os.environ["SQLALCHEMY_DATABASE_URI"] = db_uri
        os.environ["DATABASE_URL"] = db_uri
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        if cls._prev_db_uri is None:
            os.environ.pop("SQLALCHEMY_DATABASE_URI", None)
        else:
            os.environ["SQLALCHEMY_DATABASE_URI"] = cls._prev_db_uri
        if cls._prev_db_url is None:
            os.environ.pop("DATABASE_URL", None)
        else:
            os.environ["DATABASE_URL"] = cls._prev_db_url

    def setUp(self):
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.drop_all()
        db.create_all()
        admin = User(name="Admin", email="admin@rixdu.test", role="admin")
        member = User(name="Member", email="member@rixdu.test")
        db.session.add_all([admin, member])
        db.session.commit()
        self.admin_headers = {"Authorization": f"Bearer {create_token(admin.id)}"}
        self.member_headers = {"Authorization": f"Bearer {create_token(member.id)}"}

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def _store(self, **body):
        payload = {"name": "Motors", "kind": "vehicles"}
        payload.update(body)
        res = self.client.post("/api/stores", json=payload, headers=self.admin_headers)
        self.assertEqual(res.status_code, 201, res.get_data(as_text=True))
        return res.get_json()["data"]

    def _category(self, **body):
        res = self.client.post("/api/categories", json=body, headers=self.admin_headers)
        self.assertEqual(res.status_code, 201, res.get_data(as_text=True))
        return res.get_json()["data"]

    def test_store_writes_are_admin_only(self):
        res = self.client.post("/api/stores", json={"name": "Jobs"}, headers=self.member_headers)
        self.assertEqual(res.status_code, 403)
        res = self.client.post("/api/stores", json={"name": "Jobs"})
        self.assertEqual(res.status_code, 401)

    def test_store_kind_is_validated(self):
        res = self.client.post("/api/stores", json={"name": "Boats", "kind": "boats"}, headers=self.admin_headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["errors"][0]["field"], "kind")

    def test_duplicate_store_slug_conflicts(self):
        self._store()
        res = self.client.post("/api/stores", json={"name": "Motors"}, headers=self.admin_headers)
        self.assertEqual(res.status_code, 409)

    def test_tree_and_path_endpoints(self):
        store = self._store()
        root = self._category(store_id=store["id"], name="Cars")
        leaf = self._category(
            store_id=store["id"],
            name="SUVs",
            parent_id=root["id"],
            is_leaf=True,
            fields=[{"name": "title", "type": "text", "required": True}],
        )

        res = self.client.get(f"/api/categories/tree/{store['slug']}")
        self.assertEqual(res.status_code, 200)
        etag = res.headers.get("ETag")
        self.assertTrue(etag)
        tree = res.get_json()["data"]
        self.assertEqual(tree[0]["children"][0]["id"], leaf["id"])

        cached = self.client.get(f"/api/categories/tree/{store['slug']}", headers={"If-None-Match": etag})
        self.assertEqual(cached.status_code, 304)

        path = self.client.get(f"/api/categories/{leaf['id']}/path").get_json()["data"]
        self.assertEqual([c["id"] for c in path], [root["id"], leaf["id"]])

        children = self.client.get(f"/api/categories/{root['id']}/children").get_json()
        self.assertEqual(children["count"], 1)

    def test_invalid_field_definitions_are_rejected(self):
        store = self._store()
        res = self.client.post(
            "/api/categories",
            json={"store_id": store["id"], "name": "Vans", "is_leaf": True, "fields": [{"name": "", "type": "text"}]},
            headers=self.admin_headers,
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual(Category.query.count(), 0)

    def test_search_returns_breadcrumbs(self):
        store = self._store()
        root = self._category(store_id=store["id"], name="Cars")
        self._category(store_id=store["id"], name="Electric Cars", parent_id=root["id"], is_leaf=True, fields=[])
        res = self.client.get("/api/categories/search?q=electric")
        items = res.get_json()["data"]
        self.assertEqual(items[0]["breadcrumbs"], ["Cars", "Electric Cars"])


if __name__ == "__main__":
    unittest.main()
