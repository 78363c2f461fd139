"""
Collections API tests.

Run with:
    pytest tests/test_collections_api.py -v
"""

from dataclasses import replace


class TestCreateCollection:

    def test_slug_from_title(self, client, auth, admin):
        resp = client.post(
            "/api/collections",
            json={"title": "Historical Photos", "description": "Archive", "metadata": {"curator": "A. Person"}},
            headers=auth,
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["slug"] == "historical-photos"
        assert body["metadata"] == {"curator": "A. Person"}
        assert body["is_public"] is True
        assert body["created_by"] == admin[0]

    def test_duplicate_title_rejected(self, client, auth):
        client.post("/api/collections", json={"title": "Historical Photos"}, headers=auth)
        resp = client.post("/api/collections", json={"title": "historical  photos!"}, headers=auth)
        assert resp.status_code == 400
        assert "already exists" in resp.json()["error"]

    def test_title_required(self, client, auth):
        resp = client.post("/api/collections", json={"description": "no title"}, headers=auth)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Title is required"}

    def test_title_without_slug_characters(self, client, auth):
        assert client.post("/api/collections", json={"title": "???"}, headers=auth).status_code == 400

    def test_requires_auth(self, client):
        assert client.post("/api/collections", json={"title": "Nope"}).status_code == 401

    def test_string_is_public_rejected(self, client, auth):
        resp = client.post("/api/collections", json={"title": "Maps", "is_public": "false"}, headers=auth)
        assert resp.status_code == 400
        assert resp.json() == {"error": "is_public must be a boolean"}
        assert client.get("/api/collections/maps", headers=auth).status_code == 404


class TestReadCollections:

    def test_anonymous_list_hides_private(self, client, catalog):
        body = client.get("/api/collections").json()
        assert [c["slug"] for c in body["collections"]] == ["photos"]
        assert body["pagination"]["total"] == 1

    def test_admin_list_newest_first(self, client, catalog, auth):
        body = client.get("/api/collections", headers=auth).json()
        assert [c["slug"] for c in body["collections"]] == ["vault", "photos"]

    def test_get_by_slug_and_id(self, client, catalog):
        by_slug = client.get("/api/collections/photos").json()
        by_id = client.get(f"/api/collections/{catalog['photos']}").json()
        assert by_slug == by_id
        assert by_slug["item_count"] == 3

    def test_item_count_for_admin_includes_private(self, client, catalog, auth):
        assert client.get("/api/collections/photos", headers=auth).json()["item_count"] == 4

    def test_private_collection_forbidden(self, client, catalog):
        resp = client.get("/api/collections/vault")
        assert resp.status_code == 403
        assert resp.json() == {"error": "Unauthorized"}

    def test_missing_collection(self, client):
        resp = client.get("/api/collections/nowhere")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Collection not found"}


class TestUpdateCollection:

    def test_title_change_regenerates_slug(self, client, catalog, auth):
        resp = client.put("/api/collections/photos", json={"title": "Old Photographs"}, headers=auth)
        assert resp.status_code == 200
        assert resp.json()["slug"] == "old-photographs"
        assert client.get("/api/collections/old-photographs").status_code == 200
        assert client.get("/api/collections/photos").status_code == 404

    def test_retitle_to_own_slug_is_allowed(self, client, catalog, auth):
        resp = client.put("/api/collections/photos", json={"title": "PHOTOS"}, headers=auth)
        assert resp.status_code == 200
        assert resp.json()["slug"] == "photos"

    def test_slug_collision(self, client, catalog, auth):
        resp = client.put("/api/collections/photos", json={"title": "Vault"}, headers=auth)
        assert resp.status_code == 400
        assert "already exists" in resp.json()["error"]

    def test_visibility_toggle(self, client, catalog, auth):
        client.put("/api/collections/vault", json={"is_public": True}, headers=auth)
        assert client.get("/api/collections/vault").status_code == 200
        assert client.get(f"/api/items/{catalog['tape']}").status_code == 200

    def test_nothing_to_update(self, client, catalog, auth):
        assert client.put("/api/collections/photos", json={}, headers=auth).status_code == 400

    def test_string_is_public_rejected(self, client, catalog, auth):
        resp = client.put("/api/collections/photos", json={"is_public": "false"}, headers=auth)
        assert resp.status_code == 400
        assert resp.json() == {"error": "is_public must be a boolean"}
        assert client.get("/api/collections/photos").status_code == 200


class TestDeleteCollection:

    def test_delete_cascades_to_items(self, client, catalog, auth):
        resp = client.delete("/api/collections/photos", headers=auth)
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

        assert client.get("/api/collections/photos").status_code == 404
        assert client.get(f"/api/items/{catalog['city_hall']}").status_code == 404
        remaining = client.get("/api/items", headers=auth).json()["items"]
        assert [it["id"] for it in remaining] == [catalog["tape"]]
        assert client.get("/api/search", params={"q": "downtown"}, headers=auth).json()["items"] == []

    def test_delete_missing(self, client, auth):
        assert client.delete("/api/collections/nowhere", headers=auth).status_code == 404

    def test_delete_requires_auth(self, client, catalog):
        assert client.delete("/api/collections/photos").status_code == 401

    def _collection_with_blob(self, client, auth, svc):
        svc.blobs.put("789-ghi-map.png", b"png", "image/png")
        collection = client.post("/api/collections", json={"title": "Maps"}, headers=auth).json()
        client.post(
            "/api/items",
            json={
                "collection_id": collection["id"],
                "title": "County Map",
                "item_type": "image",
                "media_url": "/media/789-ghi-map.png",
            },
            headers=auth,
        )
        return collection["slug"]

    def test_blob_failure_does_not_block_delete(self, client, auth, svc, monkeypatch):
        slug = self._collection_with_blob(client, auth, svc)

        def broken_delete(key):
            raise RuntimeError("storage unavailable")

        monkeypatch.setattr(svc.blobs, "delete", broken_delete)
        resp = client.delete(f"/api/collections/{slug}", headers=auth)
        assert resp.status_code == 200
        assert client.get(f"/api/collections/{slug}", headers=auth).status_code == 404
        assert client.get("/api/items", headers=auth).json()["items"] == []
        assert svc.blobs.get("789-ghi-map.png") is not None

    def test_blobs_kept_when_policy_disabled(self, client, auth, svc):
        slug = self._collection_with_blob(client, auth, svc)
        svc.settings = replace(svc.settings, delete_blobs_on_delete=False)

        assert client.delete(f"/api/collections/{slug}", headers=auth).status_code == 200
        assert client.get("/api/items", headers=auth).json()["items"] == []
        assert svc.blobs.get("789-ghi-map.png") is not None

    def test_blobs_removed_by_default(self, client, auth, svc):
        slug = self._collection_with_blob(client, auth, svc)
        assert client.delete(f"/api/collections/{slug}", headers=auth).status_code == 200
        assert svc.blobs.get("789-ghi-map.png") is None
