"""
Tests for the action router and its handlers.

Each test dispatches a request through ActionRouter against the
in-memory blob store, then checks the status code, the envelope, and
what ended up in the store.
"""

import asyncio
import base64
import json
import re

import pytest

from conftest import FIXED_NOW, run
from src.core.actions import (
    AVAILABLE_ACTIONS,
    ROUTES,
    Action,
    ActionRequest,
    ActionRouter,
    HandlerContext,
)
from src.core.actions.models import epoch_millis


STAMP = epoch_millis(FIXED_NOW)
NOW_ISO = "2026-10-19T12:00:00.123Z"
JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg\xff\xd9"
JPEG_DATA_URL = "data:image/jpeg;base64," + base64.b64encode(JPEG_BYTES).decode("ascii")


def as_json(payload) -> bytes:
    return json.dumps(payload).encode("utf-8")


class GatedFetcher:
    """
    Holds every fetch until `expected` fetches are in flight at once.

    A handler that fetched one document at a time would never open the
    gate, so each fetch would time out and be dropped.
    """

    def __init__(self, documents: dict, expected: int) -> None:
        self.documents = documents
        self.expected = expected
        self.in_flight = 0
        self.max_in_flight = 0
        self._gate = None

    async def fetch_json(self, url):
        if self._gate is None:
            self._gate = asyncio.Event()
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        if self.in_flight >= self.expected:
            self._gate.set()
        try:
            await asyncio.wait_for(self._gate.wait(), timeout=1)
        finally:
            self.in_flight -= 1
        return self.documents[url]


def dispatch_gated(store, fetcher, action):
    router = ActionRouter(HandlerContext(store=store, fetcher=fetcher))
    return run(router.dispatch(ActionRequest(method="GET", query={"action": action})))


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

class TestRouteTable:
    """Tests for the closed route table."""

    def test_every_action_has_a_route(self):
        assert set(ROUTES) == set(Action)

    def test_allowed_methods(self):
        assert ROUTES[Action.UPLOAD].allowed_methods == {"POST"}
        assert ROUTES[Action.CC].allowed_methods == {"GET", "POST", "DELETE"}
        assert ROUTES[Action.SAVE_ENHANCED].allowed_methods == {"POST"}
        assert ROUTES[Action.LIST_UPLOADS].allowed_methods == {"GET"}
        assert ROUTES[Action.DELETE_UPLOAD].allowed_methods == {"DELETE"}
        assert ROUTES[Action.GET_METADATA].allowed_methods == {"GET"}

    def test_health_accepts_any_method(self):
        route = ROUTES[Action.HEALTH]
        assert route.handler_for("DELETE") is route.handler_for("GET")


class TestDispatch:
    """Tests for classification, method enforcement, and preflight."""

    @pytest.mark.parametrize("action", AVAILABLE_ACTIONS)
    def test_options_is_empty_200_for_every_action(self, dispatch, action):
        response = dispatch("OPTIONS", action=action, url="ignored")

        assert response.status_code == 200
        assert response.body is None

    def test_options_without_action(self, dispatch):
        response = dispatch("OPTIONS")
        assert response.status_code == 200
        assert response.body is None

    def test_wrong_method_is_405(self, dispatch):
        response = dispatch("GET", action="upload")

        assert response.status_code == 405
        assert response.body == {"success": False, "error": "Method not allowed"}

    def test_unsupported_cc_method_is_405(self, dispatch):
        response = dispatch("PUT", action="cc")
        assert response.status_code == 405

    @pytest.mark.parametrize("query", [{"action": "unknown-action"}, {}])
    def test_unknown_or_missing_action_is_404(self, router, query):
        response = run(router.dispatch(ActionRequest(method="GET", query=query)))

        assert response.status_code == 404
        assert response.body == {
            "success": False,
            "error": "Invalid action",
            "availableActions": list(AVAILABLE_ACTIONS),
        }

    def test_action_names_are_case_sensitive(self, dispatch):
        assert dispatch("GET", action="HEALTH").status_code == 404


# ---------------------------------------------------------------------------
# Failure Handling
# ---------------------------------------------------------------------------

class TestFailures:
    """Tests for errors raised inside handlers."""

    def test_malformed_json_is_500_with_message(self, dispatch):
        response = dispatch("POST", body=b"{not json", action="cc")

        assert response.status_code == 500
        assert response.body["success"] is False
        assert response.body["error"]
        assert "stack" not in response.body

    def test_stack_trace_only_when_enabled(self, context):
        router = ActionRouter(context, include_stack_traces=True)

        response = run(router.dispatch(
            ActionRequest(method="POST", query={"action": "cc"}, body=b"{not json")
        ))

        assert response.status_code == 500
        assert "Traceback" in response.body["stack"]

    def test_store_failure_is_500_with_store_message(self, dispatch, store):
        store.fail_lists = True

        response = dispatch("GET", action="list-uploads")

        assert response.status_code == 500
        assert response.body == {"success": False, "error": "List failed: store unavailable"}

    def test_execution_ceiling_is_enforced(self, context, store):
        """A handler that outlives the ceiling becomes a 500 envelope."""
        import asyncio

        real_list_blobs = store.list_blobs

        async def slow_list(prefix, limit):
            await asyncio.sleep(1)
            return await real_list_blobs(prefix, limit)

        store.list_blobs = slow_list
        router = ActionRouter(context, max_duration_seconds=0.01)

        response = run(router.dispatch(
            ActionRequest(method="GET", query={"action": "list-uploads"})
        ))

        assert response.status_code == 500
        assert response.body["success"] is False


# ---------------------------------------------------------------------------
# upload
# ---------------------------------------------------------------------------

class TestUpload:
    """Tests for raw uploads."""

    def test_stores_body_under_uploads_with_random_suffix(self, dispatch, store):
        response = dispatch("POST", body=b"video-bytes", action="upload", filename="clip.mp4")

        assert response.status_code == 200
        assert store.pathnames[0].startswith("uploads/clip-")
        assert store.pathnames[0].endswith(".mp4")
        assert response.body["size"] == len(b"video-bytes")
        assert response.body["uploadedAt"] == NOW_ISO
        assert response.body["downloadUrl"] == response.body["url"] + "?download=1"

    def test_default_filename_is_timestamped_jpg(self, dispatch, store):
        dispatch("POST", body=b"img", action="upload")

        assert re.fullmatch(rf"uploads/upload_{STAMP}-[A-Za-z0-9]+\.jpg", store.pathnames[0])

    def test_same_filename_twice_keeps_both(self, dispatch, store):
        dispatch("POST", body=b"a", action="upload", filename="same.jpg")
        dispatch("POST", body=b"b", action="upload", filename="same.jpg")

        assert len(store.pathnames) == 2

    def test_empty_body_is_accepted(self, dispatch):
        response = dispatch("POST", action="upload")
        assert response.status_code == 200
        assert response.body["size"] == 0


# ---------------------------------------------------------------------------
# cc
# ---------------------------------------------------------------------------

class TestCCFilters:
    """Tests for CC filter create/list/delete."""

    def test_create_requires_name_and_values(self, dispatch):
        response = dispatch("POST", body=b"{}", action="cc")

        assert response.status_code == 400
        assert response.body == {"success": False, "error": "Missing name or values"}

    @pytest.mark.parametrize("payload", [
        {"name": "", "values": {"a": 1}},
        {"name": "warm", "values": None},
        {"name": "warm", "values": 0},
        {"values": {"a": 1}},
        ["not", "an", "object"],
    ])
    def test_create_rejects_blank_fields(self, dispatch, payload):
        response = dispatch("POST", body=as_json(payload), action="cc")
        assert response.status_code == 400

    def test_create_sanitizes_name_in_pathname(self, dispatch, store):
        payload = {"name": "My Filter!", "values": {"a": 1}}

        response = dispatch("POST", body=as_json(payload), action="cc")

        assert response.status_code == 200
        assert re.fullmatch(r"cc-filters/My_Filter__\d+\.json", store.pathnames[0])
        assert store.pathnames[0] == f"cc-filters/My_Filter__{STAMP}.json"
        assert response.body == {
            "success": True,
            "url": store.url_for(store.pathnames[0]),
            "name": "My Filter!",
            "uploadedAt": NOW_ISO,
        }

    def test_create_stores_whole_document(self, dispatch, store):
        payload = {"name": "warm", "values": {"r": 1.1}, "author": "kim"}

        response = dispatch("POST", body=as_json(payload), action="cc")

        assert json.loads(store.read(response.body["url"])) == payload

    def test_list_resolves_name_and_values(self, dispatch, store):
        run(store.put("cc-filters/warm_1.json", as_json({"name": "Warm", "values": {"r": 2}})))
        run(store.put("cc-filters/raw_2.json", as_json({"r": 3})))

        response = dispatch("GET", action="cc")

        assert response.status_code == 200
        assert response.body["count"] == 2
        by_url = {item["url"]: item for item in response.body["filters"]}
        raw = by_url[store.url_for("cc-filters/raw_2.json")]
        warm = by_url[store.url_for("cc-filters/warm_1.json")]
        assert warm["name"] == "Warm"
        assert warm["values"] == {"r": 2}
        assert raw["name"] == "raw_2.json"
        assert raw["values"] == {"r": 3}
        assert set(warm) == {"name", "url", "uploadedAt", "size", "values"}

    def test_list_drops_unreadable_documents(self, dispatch, store):
        run(store.put("cc-filters/good_1.json", as_json({"name": "good", "values": [1]})))
        run(store.put("cc-filters/bad_2.json", b"\x00not json"))

        response = dispatch("GET", action="cc")

        assert response.status_code == 200
        assert response.body["count"] == 1
        assert [item["name"] for item in response.body["filters"]] == ["good"]

    def test_list_fetches_documents_concurrently(self, store):
        documents = {}
        for index in range(3):
            result = run(store.put(f"cc-filters/f_{index}.json", b"{}"))
            documents[result.url] = {"name": f"f{index}", "values": [index]}
        fetcher = GatedFetcher(documents, expected=3)

        response = dispatch_gated(store, fetcher, "cc")

        assert response.status_code == 200
        assert response.body["count"] == 3
        assert fetcher.max_in_flight == 3

    def test_list_ignores_other_prefixes(self, dispatch, store):
        run(store.put("uploads/photo.jpg", b"img"))

        response = dispatch("GET", action="cc")

        assert response.body == {"success": True, "filters": [], "count": 0}

    def test_delete_requires_url(self, dispatch):
        response = dispatch("DELETE", action="cc")

        assert response.status_code == 400
        assert response.body == {"success": False, "error": "URL parameter required"}

    def test_delete_removes_filter(self, dispatch, store):
        created = dispatch("POST", body=as_json({"name": "x", "values": 1}), action="cc")

        response = dispatch("DELETE", action="cc", url=created.body["url"])

        assert response.body == {"success": True, "message": "CC filter deleted successfully"}
        assert store.pathnames == []


# ---------------------------------------------------------------------------
# save-enhanced
# ---------------------------------------------------------------------------

class TestSaveEnhanced:
    """Tests for enhanced image persistence."""

    def test_requires_image(self, dispatch):
        response = dispatch("POST", body=b"{}", action="save-enhanced")

        assert response.status_code == 400
        assert response.body == {"success": False, "error": "No image provided"}

    @pytest.mark.parametrize("image", [
        "not-a-data-url",
        "data:text/plain;base64,aGVsbG8=",
        "data:image/jpeg;base64,",
        "data:image/jpeg;base64,@@@@",
        12345,
    ])
    def test_rejects_invalid_image(self, dispatch, store, image):
        response = dispatch("POST", body=as_json({"image": image}), action="save-enhanced")

        assert response.status_code == 400
        assert response.body == {"success": False, "error": "Invalid image format"}
        assert store.pathnames == []

    def test_stores_decoded_jpeg_without_metadata(self, dispatch, store):
        response = dispatch("POST", body=as_json({"image": JPEG_DATA_URL}), action="save-enhanced")

        assert response.status_code == 200
        assert store.pathnames == [f"enhanced/enhanced_{STAMP}.jpg"]
        assert store.read(response.body["url"]) == JPEG_BYTES
        assert response.body == {
            "success": True,
            "url": store.url_for(f"enhanced/enhanced_{STAMP}.jpg"),
            "downloadUrl": store.url_for(f"enhanced/enhanced_{STAMP}.jpg") + "?download=1",
            "size": len(JPEG_BYTES),
        }

    def test_accepts_unpadded_base64(self, dispatch, store):
        image = "data:image/png;base64," + base64.b64encode(b"ab").decode().rstrip("=")

        response = dispatch("POST", body=as_json({"image": image}), action="save-enhanced")

        assert response.status_code == 200
        assert store.read(response.body["url"]) == b"ab"

    def test_writes_metadata_side_document(self, dispatch, store):
        payload = {"image": JPEG_DATA_URL, "metadata": {"filter": "warm", "strength": 0.5}}

        response = dispatch("POST", body=as_json(payload), action="save-enhanced")

        assert response.status_code == 200
        assert store.pathnames == [
            f"enhanced/enhanced_{STAMP}.jpg",
            f"metadata/meta_{STAMP}.json",
        ]
        document = json.loads(store.read(response.body["metadataUrl"]))
        assert document == {
            "filter": "warm",
            "strength": 0.5,
            "imageUrl": response.body["url"],
            "timestamp": NOW_ISO,
        }

    def test_metadata_failure_keeps_image(self, context, store):
        store.failing_prefixes = ("metadata/",)
        router = ActionRouter(context)
        payload = {"image": JPEG_DATA_URL, "metadata": {"filter": "warm"}}

        response = run(router.dispatch(ActionRequest(
            method="POST", query={"action": "save-enhanced"}, body=as_json(payload),
        )))

        assert response.status_code == 200
        assert response.body["success"] is True
        assert response.body["metadataError"] == "Upload failed: store unavailable"
        assert store.pathnames == [f"enhanced/enhanced_{STAMP}.jpg"]

    def test_rejects_non_object_metadata_before_writing(self, dispatch, store):
        payload = {"image": JPEG_DATA_URL, "metadata": ["a"]}

        response = dispatch("POST", body=as_json(payload), action="save-enhanced")

        assert response.status_code == 400
        assert response.body["error"] == "Invalid metadata format"
        assert store.pathnames == []

    def test_image_write_failure_is_500(self, dispatch, store):
        store.failing_prefixes = ("enhanced/",)

        response = dispatch("POST", body=as_json({"image": JPEG_DATA_URL}), action="save-enhanced")

        assert response.status_code == 500
        assert response.body == {"success": False, "error": "Upload failed: store unavailable"}


# ---------------------------------------------------------------------------
# list-uploads / delete-upload
# ---------------------------------------------------------------------------

class TestUploadListing:
    """Tests for listing and deleting uploads."""

    @pytest.fixture
    def uploads(self, store):
        for i in range(3):
            run(store.put(f"uploads/file_{i}.jpg", b"x" * (i + 1)))
        run(store.put("enhanced/enhanced_1.jpg", b"e"))

    def test_lists_uploads_prefix_by_default(self, dispatch, uploads):
        response = dispatch("GET", action="list-uploads")

        assert response.status_code == 200
        assert response.body["count"] == 3
        first = response.body["uploads"][0]
        assert first["pathname"] == "uploads/file_0.jpg"
        assert first["size"] == 1
        assert set(first) == {"url", "downloadUrl", "pathname", "size", "uploadedAt"}

    def test_custom_prefix(self, dispatch, uploads):
        response = dispatch("GET", action="list-uploads", prefix="enhanced/")

        assert [u["pathname"] for u in response.body["uploads"]] == ["enhanced/enhanced_1.jpg"]

    def test_limit(self, dispatch, uploads):
        response = dispatch("GET", action="list-uploads", limit="2")
        assert response.body["count"] == 2

    def test_unparseable_limit_falls_back_to_default(self, dispatch, uploads):
        response = dispatch("GET", action="list-uploads", limit="lots")
        assert response.body["count"] == 3

    def test_delete_requires_url(self, dispatch):
        response = dispatch("DELETE", action="delete-upload")

        assert response.status_code == 400
        assert response.body["error"] == "URL parameter required"

    def test_delete_removes_upload(self, dispatch, store, uploads):
        url = store.url_for("uploads/file_0.jpg")

        response = dispatch("DELETE", action="delete-upload", url=url)

        assert response.body == {"success": True, "message": "Upload deleted successfully"}
        assert "uploads/file_0.jpg" not in store.pathnames

    def test_delete_of_foreign_url_is_500(self, dispatch):
        response = dispatch("DELETE", action="delete-upload", url="https://elsewhere.example/x")

        assert response.status_code == 500
        assert "does not belong" in response.body["error"]


# ---------------------------------------------------------------------------
# get-metadata
# ---------------------------------------------------------------------------

class TestGetMetadata:
    """Tests for metadata listing."""

    def test_annotates_documents(self, dispatch, store):
        run(store.put("metadata/meta_1.json", as_json({"filter": "warm", "imageUrl": "i"})))

        response = dispatch("GET", action="get-metadata")

        assert response.status_code == 200
        assert response.body["count"] == 1
        item = response.body["metadata"][0]
        assert item["filter"] == "warm"
        assert item["metadataUrl"] == store.url_for("metadata/meta_1.json")
        assert "uploadedAt" in item

    def test_drops_unreadable_and_non_object_documents(self, dispatch, store):
        run(store.put("metadata/meta_1.json", as_json({"ok": True})))
        run(store.put("metadata/meta_2.json", b"garbage"))
        run(store.put("metadata/meta_3.json", as_json([1, 2, 3])))

        response = dispatch("GET", action="get-metadata")

        assert response.body["count"] == 1
        assert response.body["metadata"][0]["ok"] is True

    def test_fetches_documents_concurrently(self, store):
        documents = {}
        for index in range(4):
            result = run(store.put(f"metadata/meta_{index}.json", b"{}"))
            documents[result.url] = {"index": index}
        fetcher = GatedFetcher(documents, expected=4)

        response = dispatch_gated(store, fetcher, "get-metadata")

        assert response.status_code == 200
        assert sorted(item["index"] for item in response.body["metadata"]) == [0, 1, 2, 3]
        assert fetcher.max_in_flight == 4

    def test_post_is_405(self, dispatch):
        assert dispatch("POST", action="get-metadata").status_code == 405


# ---------------------------------------------------------------------------
# health
# ---------------------------------------------------------------------------

class TestHealth:
    """Tests for the health probe."""

    @pytest.mark.parametrize("method", ["GET", "POST", "DELETE"])
    def test_always_healthy(self, dispatch, method):
        response = dispatch(method, action="health")

        assert response.status_code == 200
        assert response.body == {
            "success": True,
            "status": "healthy",
            "timestamp": NOW_ISO,
            "availableActions": list(AVAILABLE_ACTIONS),
        }

    def test_lists_same_actions_as_not_found(self, dispatch):
        health = dispatch("GET", action="health")
        missing = dispatch("GET", action="nope")

        assert health.body["availableActions"] == missing.body["availableActions"]
        assert len(health.body["availableActions"]) == 7
