from __future__ import annotations

import unittest

from rixdu.services.listing_values import (
    normalize_field_definitions,
    required_file_fields,
    slugify,
    validate,
    validate_update,
)


CAR_FIELDS = [
    {"name": "title", "label": "Title", "type": "text", "required": True},
    {"name": "price", "label": "Price", "type": "number", "required": True},
    {"name": "color", "label": "Color", "type": "select", "options": ["red", "blue"]},
    {"name": "location", "label": "Location", "type": "point"},
    {"name": "photos", "label": "Photos", "type": "file", "required": True, "multiple": True},
]


class ListingValidatorTestCase(unittest.TestCase):
    def test_reports_every_invalid_field_in_one_pass(self):
        fields = [
            {"name": "price", "label": "Price", "type": "number", "required": True},
            {"name": "color", "label": "Color", "type": "select", "options": ["red", "blue"]},
        ]
        result = validate(fields, {"price": "abc", "color": "green"})
        self.assertFalse(result.ok)
        self.assertEqual(len(result.errors), 2)
        self.assertEqual({e.field for e in result.errors}, {"price", "color"})
        self.assertNotIn("price", result.values_json())
        self.assertNotIn("color", result.values_json())
        messages = " ".join(e["message"] for e in result.errors_json())
        self.assertIn("must be a valid number", messages)
        self.assertIn("must be one of the following values: red, blue", messages)

    def test_numbers_are_coerced_and_unknown_keys_dropped(self):
        result = validate(
            CAR_FIELDS,
            {"title": "Civic", "price": "12500", "color": "red", "photos": ["https://cdn/x.jpg"], "bogus": 1},
        )
        self.assertTrue(result.ok, result.errors_json())
        values = result.values_json()
        self.assertEqual(values["price"], 12500)
        self.assertNotIn("bogus", values)
        self.assertEqual(values["photos"][0]["url"], "https://cdn/x.jpg")

    def test_required_missing_field_is_reported(self):
        result = validate(CAR_FIELDS, {"price": 10, "photos": ["https://cdn/x.jpg"]})
        self.assertEqual([e.field for e in result.errors], ["title"])
        self.assertIn("is required", result.errors[0].message)

    def test_point_accepts_object_and_geojson_pair(self):
        fields = [{"name": "location", "type": "point"}]
        as_object = validate(fields, {"location": {"address": "Dubai Marina", "coordinates": {"lat": 25.08, "lng": 55.14}}})
        as_pair = validate(fields, {"location": [55.14, 25.08]})
        self.assertTrue(as_object.ok)
        self.assertTrue(as_pair.ok)
        self.assertEqual(as_object.values_json()["location"]["coordinates"], {"lat": 25.08, "lng": 55.14})
        self.assertEqual(as_object.values_json()["location"]["address"], "Dubai Marina")
        self.assertEqual(as_pair.values_json()["location"]["coordinates"], {"lat": 25.08, "lng": 55.14})

    def test_point_rejects_non_numeric_coordinates(self):
        result = validate([{"name": "location", "type": "point"}], {"location": {"lat": "north", "lng": 1}})
        self.assertFalse(result.ok)
        self.assertEqual(result.errors[0].field, "location")

    def test_required_file_waived_only_when_listed(self):
        data = {"title": "Civic", "price": 1}
        strict = validate(CAR_FIELDS, data)
        waived = validate(CAR_FIELDS, data, skip_required_for=required_file_fields(CAR_FIELDS))
        self.assertEqual([e.field for e in strict.errors], ["photos"])
        self.assertTrue(waived.ok)

    def test_update_keeps_stale_keys_and_validates_only_submitted(self):
        stored = {"title": "Civic", "price": 100, "legacy_trim": "EX"}
        merged, result = validate_update(CAR_FIELDS, stored, {"price": "150"})
        self.assertTrue(result.ok)
        self.assertEqual(merged["price"], 150)
        self.assertEqual(merged["title"], "Civic")
        self.assertEqual(merged["legacy_trim"], "EX")

    def test_update_ignores_new_unknown_keys(self):
        merged, result = validate_update(CAR_FIELDS, {"title": "Civic"}, {"turbo": True})
        self.assertTrue(result.ok)
        self.assertNotIn("turbo", merged)

    def test_update_rejects_bad_value(self):
        _merged, result = validate_update(CAR_FIELDS, {"price": 100}, {"price": "cheap"})
        self.assertFalse(result.ok)
        self.assertEqual(result.errors[0].field, "price")

    def test_field_definitions_are_normalized(self):
        fields, errors = normalize_field_definitions(
            [
                {"name": "price", "type": "number", "required": True},
                {"name": "price", "type": "text"},
                {"name": "", "type": "text"},
            ]
        )
        self.assertEqual([f["name"] for f in fields], ["price"])
        self.assertTrue(errors)

    def test_slugify(self):
        self.assertEqual(slugify("  Honda Civic -- 2019!  "), "honda-civic-2019")
        self.assertEqual(slugify(""), "")


if __name__ == "__main__":
    unittest.main()
