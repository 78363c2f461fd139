"""
Items API tests: listing filters, visibility, facets, detail, admin writes.

Uses the connexion test client against a throwaway SQLite database.

Run with:
    pytest tests/test_items_api.py -v
"""

from dataclasses import replace

import pytest


def _ids(resp):
    return {it["id"] for it in resp.json()["items"]}


# ============================================================================
# LISTING
# ============================================================================

class TestListItems:

    def test_anonymous_sees_only_public_items_in_public_collections(self, client, catalog):
        resp = client.get("/api/items")
        assert resp.status_code == 200
        assert _ids(resp) == {catalog["city_hall"], catalog["main_street"], catalog["charter"]}
        assert resp.json()["pagination"]["total"] == 3
        assert resp.json()["facets"] is None

    def test_admin_sees_everything(self, client, catalog, auth):
        resp = client.get("/api/items", headers=auth)
        assert resp.json()["pagination"]["total"] == 5

    def test_type_filter_with_limit(self, client, catalog):
        resp = client.get("/api/items", params={"type": "image", "limit": "2"})
        body = resp.json()
        assert _ids(resp) == {catalog["city_hall"], catalog["main_street"]}
        assert body["pagination"] == {"total": 2, "limit": 2, "offset": 0, "hasMore": False}

    def test_newest_first(self, client, catalog):
        ids = [it["id"] for it in client.get("/api/items").json()["items"]]
        assert ids == [catalog["charter"], catalog["main_street"], catalog["city_hall"]]

    def test_offset_paging(self, client, catalog):
        first = client.get("/api/items", params={"limit": "2"}).json()
        second = client.get("/api/items", params={"limit": "2", "offset": "2"}).json()
        assert first["pagination"]["hasMore"] is True
        assert second["pagination"]["hasMore"] is False
        assert len(first["items"]) == 2 and len(second["items"]) == 1

    def test_tag_filter(self, client, catalog):
        resp = client.get("/api/items", params={"tag": "architecture"})
        assert _ids(resp) == {catalog["city_hall"], catalog["main_street"]}
        assert {t["slug"] for t in resp.json()["items"][0]["tags"]} == {"architecture"}

    def test_metadata_filter_respects_visibility(self, client, catalog, auth):
        anon = client.get("/api/items", params={"meta_creator": "Unknown"})
        assert _ids(anon) == {catalog["city_hall"], catalog["charter"]}
        admin = client.get("/api/items", params={"meta_creator": "Unknown"}, headers=auth)
        assert _ids(admin) == {catalog["city_hall"], catalog["charter"], catalog["secret"]}

    def test_collection_filter_by_slug_or_id(self, client, catalog):
        by_slug = client.get("/api/items", params={"collection": "photos"})
        by_id = client.get("/api/items", params={"collection": str(catalog["photos"])})
        assert _ids(by_slug) == _ids(by_id)
        assert len(_ids(by_slug)) == 3

    def test_private_collection_filtered_by_id_is_empty_for_anonymous(self, client, catalog, auth):
        anon = client.get("/api/items", params={"collection": str(catalog["vault"])}).json()
        assert anon["items"] == []
        assert anon["pagination"]["total"] == 0
        admin = client.get("/api/items", params={"collection": str(catalog["vault"])}, headers=auth)
        assert _ids(admin) == {catalog["tape"]}

    def test_unknown_parameters_are_ignored(self, client, catalog):
        resp = client.get("/api/items", params={"utm_source": "newsletter", "limit": "junk"})
        assert resp.status_code == 200
        assert resp.json()["pagination"]["limit"] == 20

    @pytest.mark.parametrize(
        "params",
        [
            {},
            {"type": "image"},
            {"tag": "architecture"},
            {"collection": "photos", "meta_creator": "Unknown"},
            {"type": "audio"},
            {"meta_creator": "Nobody"},
        ],
    )
    def test_total_matches_unpaged_rows(self, client, catalog, auth, params):
        for headers in ({}, auth):
            body = client.get("/api/items", params={**params, "limit": "100"}, headers=headers).json()
            assert body["pagination"]["total"] == len(body["items"])

    def test_each_item_carries_media_element(self, client, catalog):
        items = client.get("/api/items").json()["items"]
        by_type = {it["item_type"]: it["media_element"] for it in items}
        assert by_type == {"image": "img", "document": "iframe"}


# ============================================================================
# FACETS
# ============================================================================

class TestFacets:

    def test_anonymous_facets(self, client, catalog):
        facets = client.get("/api/items", params={"facets": "true"}).json()["facets"]
        assert facets["type"]["values"] == [
            {"value": "image", "count": 2},
            {"value": "document", "count": 1},
        ]
        assert facets["creator"] == {
            "field_type": "text",
            "values": [{"value": "Unknown", "count": 2}, {"value": "John Smith", "count": 1}],
        }
        # Facet field without any values, and a non-facet field.
        assert "location" not in facets
        assert "date" not in facets

    def test_admin_facets_include_private_records(self, client, catalog, auth):
        facets = client.get("/api/items", params={"facets": "true"}, headers=auth).json()["facets"]
        counts = {v["value"]: v["count"] for v in facets["type"]["values"]}
        assert counts == {"image": 3, "document": 1, "audio": 1}

    def test_facets_describe_catalogue_not_filtered_page(self, client, catalog):
        facets = client.get("/api/items", params={"facets": "true", "type": "document"}).json()["facets"]
        counts = {v["value"]: v["count"] for v in facets["type"]["values"]}
        assert counts == {"image": 2, "document": 1}

    def test_type_facet_present_on_empty_catalogue(self, client):
        facets = client.get("/api/items", params={"facets": "true"}).json()["facets"]
        assert facets == {"type": {"field_type": "text", "values": []}}


# ============================================================================
# DETAIL
# ============================================================================

class TestGetItem:

    def test_detail_shape(self, client, catalog):
        resp = client.get(f"/api/items/{catalog['city_hall']}")
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "public, max-age=300"
        body = resp.json()
        assert body["collection_slug"] == "photos"
        assert [t["name"] for t in body["tags"]] == ["Architecture"]
        assert body["metadata_fields"] == [
            {"name": "creator", "field_type": "text", "value": "Unknown"},
            {"name": "date", "field_type": "date", "value": "1920-06-15"},
        ]

    def test_related_items_are_public_and_exclude_self(self, client, catalog):
        related = client.get(f"/api/items/{catalog['city_hall']}").json()["related_items"]
        assert {r["id"] for r in related} == {catalog["main_street"], catalog["charter"]}

    def test_view_count_increments(self, client, catalog):
        url = f"/api/items/{catalog['charter']}"
        first = client.get(url).json()["view_count"]
        second = client.get(url).json()["view_count"]
        assert second == first + 1

    def test_private_item_is_forbidden(self, client, catalog):
        resp = client.get(f"/api/items/{catalog['secret']}")
        assert resp.status_code == 403
        assert resp.json() == {"error": "Unauthorized"}

    def test_public_item_in_private_collection_is_forbidden(self, client, catalog):
        assert client.get(f"/api/items/{catalog['tape']}").status_code == 403

    def test_missing_item_is_not_found(self, client, catalog):
        resp = client.get("/api/items/999999")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Item not found"}

    def test_admin_can_read_private_item(self, client, catalog, auth):
        assert client.get(f"/api/items/{catalog['secret']}", headers=auth).status_code == 200


class TestItemCaching:
    """
    Only responses an anonymous caller could have fetched are marked
    cacheable by shared caches.
    """

    def test_anonymous_public_item_is_cacheable(self, client, catalog):
        resp = client.get(f"/api/items/{catalog['main_street']}")
        assert resp.headers["cache-control"] == "public, max-age=300"

    def test_admin_fetch_of_private_item_is_not_stored(self, client, catalog, auth):
        resp = client.get(f"/api/items/{catalog['secret']}", headers=auth)
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "private, no-store"

    def test_admin_fetch_of_item_in_private_collection_is_not_stored(self, client, catalog, auth):
        resp = client.get(f"/api/items/{catalog['tape']}", headers=auth)
        assert resp.headers["cache-control"] == "private, no-store"

    def test_admin_fetch_of_public_item_is_not_shared(self, client, catalog, auth):
        resp = client.get(f"/api/items/{catalog['main_street']}", headers=auth)
        assert resp.headers["cache-control"] == "private, no-store"


# ============================================================================
# WRITES
# ============================================================================

class TestCreateItem:

    def _body(self, catalog, **overrides):
        body = {
            "collection_id": catalog["photos"],
            "title": "Harbour 1950",
            "item_type": "image",
            "media_url": "/media/harbour.jpg",
            "tags": ["Waterfront", "Black and White"],
            "metadata_fields": {"creator": "Port Authority", "unknown_field": "ignored"},
            "content": "ships cranes dock",
        }
        body.update(overrides)
        return body

    def test_requires_auth(self, client, catalog):
        resp = client.post("/api/items", json=self._body(catalog))
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    def test_create(self, client, catalog, auth, admin):
        resp = client.post("/api/items", json=self._body(catalog), headers=auth)
        assert resp.status_code == 201
        body = resp.json()
        assert body["thumbnail_url"] == "/media/harbour.jpg"
        assert body["created_by"] == admin[0]
        assert {t["slug"] for t in body["tags"]} == {"waterfront", "black-and-white"}
        assert body["metadata_fields"] == [{"name": "creator", "field_type": "text", "value": "Port Authority"}]

        hits = client.get("/api/search", params={"q": "cranes"}).json()["items"]
        assert [h["id"] for h in hits] == [body["id"]]

    def test_missing_required_fields(self, client, catalog, auth):
        resp = client.post("/api/items", json=self._body(catalog, title=""), headers=auth)
        assert resp.status_code == 400
        assert resp.json() == {"error": "collection_id, title, and item_type are required"}

    def test_invalid_item_type(self, client, catalog, auth):
        resp = client.post("/api/items", json=self._body(catalog, item_type="hologram"), headers=auth)
        assert resp.status_code == 400
        assert "item_type" in resp.json()["error"]

    def test_unknown_collection(self, client, catalog, auth):
        resp = client.post("/api/items", json=self._body(catalog, collection_id=999999), headers=auth)
        assert resp.status_code == 404
        assert resp.json() == {"error": "Collection not found"}

    @pytest.mark.parametrize("flag", ["false", 0, None])
    def test_is_public_must_be_boolean(self, client, catalog, auth, flag):
        resp = client.post("/api/items", json=self._body(catalog, is_public=flag), headers=auth)
        assert resp.status_code == 400
        assert resp.json() == {"error": "is_public must be a boolean"}
        assert client.get("/api/search", params={"q": "cranes"}, headers=auth).json()["items"] == []

    def test_is_public_false_hides_item(self, client, catalog, auth):
        created = client.post("/api/items", json=self._body(catalog, is_public=False), headers=auth).json()
        assert created["is_public"] is False
        assert client.get(f"/api/items/{created['id']}").status_code == 403


class TestUpdateItem:

    def test_partial_update(self, client, catalog, auth):
        url = f"/api/items/{catalog['charter']}"
        resp = client.put(url, json={"title": "City Charter", "tags": ["Legal"], "is_public": False}, headers=auth)
        assert resp.status_code == 200
        body = resp.json()
        assert body["title"] == "City Charter"
        assert body["description"] == "Description of Charter"
        assert [t["slug"] for t in body["tags"]] == ["legal"]
        assert client.get(url).status_code == 403

    def test_title_change_reaches_search(self, client, catalog, auth):
        client.put(f"/api/items/{catalog['charter']}", json={"title": "Zeppelin Charter"}, headers=auth)
        hits = client.get("/api/search", params={"q": "zeppelin"}).json()["items"]
        assert [h["id"] for h in hits] == [catalog["charter"]]

    def test_nothing_to_update(self, client, catalog, auth):
        resp = client.put(f"/api/items/{catalog['charter']}", json={"bogus": 1}, headers=auth)
        assert resp.status_code == 400
        assert resp.json() == {"error": "No fields to update"}

    def test_missing_item(self, client, catalog, auth):
        assert client.put("/api/items/999999", json={"title": "x"}, headers=auth).status_code == 404

    def test_string_is_public_rejected(self, client, catalog, auth):
        url = f"/api/items/{catalog['charter']}"
        resp = client.put(url, json={"is_public": "false"}, headers=auth)
        assert resp.status_code == 400
        assert resp.json() == {"error": "is_public must be a boolean"}
        assert client.get(url).status_code == 200


class TestDeleteItem:

    def test_delete_removes_item_and_blob(self, client, catalog, auth, svc):
        svc.blobs.put("123-abc-harbour.jpg", b"jpeg", "image/jpeg")
        created = client.post(
            "/api/items",
            json={
                "collection_id": catalog["photos"],
                "title": "Harbour",
                "item_type": "image",
                "media_url": "/media/123-abc-harbour.jpg",
                "tags": ["Waterfront"],
                "content": "harbour",
            },
            headers=auth,
        ).json()

        resp = client.delete(f"/api/items/{created['id']}", headers=auth)
        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        assert client.get(f"/api/items/{created['id']}").status_code == 404
        assert svc.blobs.get("123-abc-harbour.jpg") is None
        assert client.get("/api/search", params={"q": "harbour"}).json()["items"] == []

    def test_delete_requires_auth(self, client, catalog):
        assert client.delete(f"/api/items/{catalog['charter']}").status_code == 401

    def _item_with_blob(self, client, catalog, auth, svc):
        svc.blobs.put("456-def-pier.jpg", b"jpeg", "image/jpeg")
        return client.post(
            "/api/items",
            json={
                "collection_id": catalog["photos"],
                "title": "Pier",
                "item_type": "image",
                "media_url": "/media/456-def-pier.jpg",
            },
            headers=auth,
        ).json()["id"]

    def test_blob_failure_does_not_block_delete(self, client, catalog, auth, svc, monkeypatch):
        item_id = self._item_with_blob(client, catalog, auth, svc)

        def broken_delete(key):
            raise RuntimeError("storage unavailable")

        monkeypatch.setattr(svc.blobs, "delete", broken_delete)
        resp = client.delete(f"/api/items/{item_id}", headers=auth)
        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        assert client.get(f"/api/items/{item_id}", headers=auth).status_code == 404
        assert svc.blobs.get("456-def-pier.jpg") is not None

    def test_blobs_kept_when_policy_disabled(self, client, catalog, auth, svc):
        item_id = self._item_with_blob(client, catalog, auth, svc)
        svc.settings = replace(svc.settings, delete_blobs_on_delete=False)

        assert client.delete(f"/api/items/{item_id}", headers=auth).status_code == 200
        assert client.get(f"/api/items/{item_id}", headers=auth).status_code == 404
        assert svc.blobs.get("456-def-pier.jpg") is not None
