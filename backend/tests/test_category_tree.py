from __future__ import annotations

import os
import unittest

from rixdu import create_app
from rixdu.extensions import db
from rixdu.models import Category, Listing, Store, User
from rixdu.services import category_tree
from rixdu.services.errors import Conflict, ValidationFailed


class CategoryTreeTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._prev_db_uri = os.getenv("SQLALCHEMY_DATABASE_URI")
        cls._prev_db_url = os.getenv("DATABASE_URL")
        db_uri = "sqlite:///:memory:"
        os.environ["SQLALCHEMY_DATABASE_URI"] = db_uri
        os.environ["DATABASE_URL"] = db_uri
        cls.app = create_app()
        cls.app.config.update(TESTING=True)

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
        self.store = Store(name="Motors", slug="motors", kind="vehicles")
        db.session.add(self.store)
        db.session.commit()
        self.root = category_tree.create_category({"store_id": self.store.id, "name": "Cars"})
        self.mid = category_tree.create_category({"store_id": self.store.id, "name": "Sedans", "parent_id": self.root.id})
        self.leaf = category_tree.create_category(
            {
                "store_id": self.store.id,
                "name": "Compact Sedans",
                "parent_id": self.mid.id,
                "is_leaf": True,
                "fields": [
                    {"name": "title", "type": "text", "required": True},
                    {"name": "price", "type": "number", "required": True},
                    {"name": "transmission", "type": "select", "options": ["auto", "manual"]},
                ],
            }
        )

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def _listing_in(self, category: Category) -> Listing:
        user = User(name="Seller", email=f"seller{category.id}@rixdu.test")
        db.session.add(user)
        db.session.commit()
        listing = Listing(
            store_id=self.store.id,
            category_id=category.id,
            user_id=user.id,
            slug=f"listing-{category.id}",
            values={"title": "Corolla"},
        )
        listing.set_category_path(category_tree.listing_path_for(category))
        db.session.add(listing)
        db.session.commit()
        return listing

    def test_paths_and_levels_are_denormalized(self):
        self.assertEqual(self.root.path, "")
        self.assertEqual(self.root.level, 0)
        self.assertEqual(self.mid.path, str(self.root.id))
        self.assertEqual(self.mid.level, 1)
        self.assertEqual(self.leaf.path, f"{self.root.id},{self.mid.id}")
        self.assertEqual(self.leaf.level, 2)
        self.assertEqual(self.root.children_count, 1)
        self.assertEqual(self.mid.children_count, 1)
        self.assertEqual(self.root.kind, "vehicles")

    def test_listing_path_is_ancestors_plus_leaf(self):
        listing = self._listing_in(self.leaf)
        self.assertEqual(listing.category_path, [self.root.id, self.mid.id, self.leaf.id])
        self.assertEqual([c.id for c in category_tree.ancestors(self.leaf)], [self.root.id, self.mid.id])

    def test_leaf_cannot_gain_children(self):
        with self.assertRaises(ValidationFailed):
            category_tree.create_category({"store_id": self.store.id, "name": "Too deep", "parent_id": self.leaf.id})

    def test_duplicate_slug_in_store_conflicts(self):
        with self.assertRaises(Conflict):
            category_tree.create_category({"store_id": self.store.id, "name": "Cars"})

    def test_descendants_query_covers_subtree_only(self):
        other_root = category_tree.create_category({"store_id": self.store.id, "name": "Bikes"})
        ids = set(category_tree.descendant_ids(self.root))
        self.assertEqual(ids, {self.mid.id, self.leaf.id})
        self.assertNotIn(other_root.id, ids)

    def test_move_rewrites_subtree_and_listing_paths(self):
        listing = self._listing_in(self.leaf)
        new_root = category_tree.create_category({"store_id": self.store.id, "name": "Classic"})
        category_tree.update_category(self.mid, {"parent_id": new_root.id})

        db.session.expire_all()
        mid = db.session.get(Category, self.mid.id)
        leaf = db.session.get(Category, self.leaf.id)
        self.assertEqual(mid.path, str(new_root.id))
        self.assertEqual(leaf.path, f"{new_root.id},{mid.id}")
        self.assertEqual(leaf.level, 2)
        self.assertEqual(db.session.get(Category, self.root.id).children_count, 0)
        self.assertEqual(db.session.get(Category, new_root.id).children_count, 1)
        refreshed = db.session.get(Listing, listing.id)
        self.assertEqual(refreshed.category_path, [new_root.id, mid.id, leaf.id])

    def test_move_under_own_descendant_is_rejected(self):
        with self.assertRaises(ValidationFailed):
            category_tree.move_category(self.root, self.mid)

    def test_delete_refuses_parents_and_categories_with_listings(self):
        with self.assertRaises(Conflict):
            category_tree.delete_category(self.mid)
        self._listing_in(self.leaf)
        with self.assertRaises(Conflict):
            category_tree.delete_category(self.leaf)

    def test_delete_leaf_decrements_parent(self):
        category_tree.delete_category(self.leaf)
        self.assertEqual(db.session.get(Category, self.mid.id).children_count, 0)

    def test_build_tree_nests_children(self):
        tree = category_tree.build_tree(self.store.id)
        self.assertEqual([n["id"] for n in tree], [self.root.id])
        self.assertEqual(tree[0]["children"][0]["id"], self.mid.id)
        self.assertEqual(tree[0]["children"][0]["children"][0]["id"], self.leaf.id)

    def test_dynamic_filters_skip_title(self):
        fields = category_tree.dynamic_filter_fields(self.root)
        names = {f["name"]: f for f in fields}
        self.assertNotIn("title", names)
        self.assertEqual(names["price"]["filter_type"], "range")
        self.assertEqual(names["transmission"]["filter_type"], "dropdown")


if __name__ == "__main__":
    unittest.main()
