"""API tests for /try-on routes and application startup."""
import asyncio
import base64
import threading
import unittest
from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient
import httpx

from tryon.api.routes import health, try_on
from tryon.core.config import Settings
from tryon.services.dispatch.base import GenerationClient, ImagePayload
from tryon.services.dispatch.errors import NoCredentialsConfigured, UpstreamError
from tryon.services.dispatch.service import build_try_on_service


PERSON_B64 = base64.b64encode(b"person").decode()
OUTFIT_B64 = base64.b64encode(b"outfit").decode()


class ScriptedClient(GenerationClient):
    def __init__(self, outcome):
        self.outcome = outcome

    async def generate(self, model_image, outfit_image, credential):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _make_app(outcome) -> FastAPI:
    app = FastAPI()
    app.include_router(health.router)
    app.include_router(try_on.router)
    app.state.try_on_service = build_try_on_service(
        Settings(
            gemini_api_keys="k1",
            generation_max_retries=0,
            queue_admit_delay_seconds=0,
            usage_warn_threshold=2,
        ),
        client=ScriptedClient(outcome),
    )
    return app


def _body(**overrides) -> dict:
    body = {
        "modelImage": {"base64": PERSON_B64, "mimeType": "image/png"},
        "outfitImage": {"dataUrl": f"data:image/jpeg;base64,{OUTFIT_B64}"},
    }
    body.update(overrides)
    return body


class TestTryOnRoute(unittest.TestCase):
    def test_success_returns_image_in_all_forms(self):
        app = _make_app(ImagePayload(b"composite", "image/webp"))
        with TestClient(app) as client:
            resp = client.post("/try-on", json=_body())
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual(data["image"]["mimeType"], "image/webp")
        self.assertEqual(base64.b64decode(data["image"]["base64"]), b"composite")
        self.assertEqual(data["image"]["dataUrl"], "data:image/webp;base64," + data["image"]["base64"])
        self.assertIsNone(data["warning"])

    def test_repeat_submission_carries_warning(self):
        app = _make_app(ImagePayload(b"composite", "image/png"))
        with TestClient(app) as client:
            client.post("/try-on", json=_body())
            resp = client.post("/try-on", json=_body())
        self.assertEqual(resp.status_code, 200)
        self.assertIn("tried this combination", resp.json()["warning"])

    def test_no_image_maps_to_422_with_retry_hint(self):
        app = _make_app(None)
        with TestClient(app) as client:
            resp = client.post("/try-on", json=_body())
        self.assertEqual(resp.status_code, 422)
        self.assertIn("Please try again", resp.json()["detail"])

    def test_upstream_failure_maps_to_502_without_internal_detail(self):
        app = _make_app(UpstreamError("API key k1 invalid", detail={"http_status": 400}))
        with TestClient(app) as client:
            resp = client.post("/try-on", json=_body())
        self.assertEqual(resp.status_code, 502)
        self.assertNotIn("k1", resp.json()["detail"])

    def test_undecodable_image_is_400(self):
        app = _make_app(ImagePayload(b"composite", "image/png"))
        with TestClient(app) as client:
            resp = client.post("/try-on", json=_body(modelImage={"base64": "%%%", "mimeType": "image/png"}))
        self.assertEqual(resp.status_code, 400)

    def test_missing_image_data_is_400(self):
        app = _make_app(ImagePayload(b"composite", "image/png"))
        with TestClient(app) as client:
            resp = client.post("/try-on", json=_body(modelImage={"mimeType": "image/png"}))
        self.assertEqual(resp.status_code, 400)

    def test_stats_and_clear(self):
        app = _make_app(ImagePayload(b"composite", "image/png"))
        with TestClient(app) as client:
            client.post("/try-on", json=_body())
            stats = client.get("/try-on/stats").json()
            cleared = client.post("/try-on/queue/clear").json()
        self.assertEqual(stats["credentials"]["total"], 1)
        self.assertEqual(stats["credentials"]["total_requests"], 1)
        self.assertEqual(stats["queue"]["max_concurrent"], 7)
        self.assertEqual(cleared, {"cleared": 0})

    def test_ready_when_credentials_active(self):
        app = _make_app(None)
        with TestClient(app) as client:
            self.assertEqual(client.get("/ready").status_code, 200)
            self.assertEqual(client.get("/health").json(), {"status": "ok"})


class TestStartup(unittest.TestCase):
    def test_startup_fails_without_credentials(self):
        from tryon import main

        with patch.object(main, "settings", Settings(gemini_api_keys="")):
            with self.assertRaises(NoCredentialsConfigured):
                with TestClient(main.app):
                    pass

    def test_startup_builds_service_from_settings(self):
        from tryon import main

        with patch.object(main, "settings", Settings(gemini_api_keys="k1,k2,k3")):
            with TestClient(main.app) as client:
                stats = client.get("/try-on/stats").json()
                metrics = client.get("/metrics")
        self.assertEqual(stats["credentials"]["total"], 3)
        self.assertEqual(metrics.status_code, 200)
        self.assertIn("tryon_queue_length", metrics.text)


class GatedClient(GenerationClient):
    """First call waits on the gate; later calls answer at once."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.calls = 0

    async def generate(self, model_image, outfit_image, credential):
        self.calls += 1
        if self.calls == 1:
            await self.gate.wait()
        return ImagePayload(b"composite", "image/png")


class TestClearWithWaitingRequest(unittest.IsolatedAsyncioTestCase):
    async def test_clear_fails_waiting_post_with_503_on_event_loop(self):
        upstream = GatedClient()
        app = FastAPI()
        app.include_router(try_on.router)
        service = build_try_on_service(
            Settings(gemini_api_keys="k1", queue_max_concurrent=1, queue_admit_delay_seconds=0),
            client=upstream,
        )
        app.state.try_on_service = service

        clear_calls = []
        original_clear = service.queue.clear

        def recording_clear():
            try:
                asyncio.get_running_loop()
                on_loop = True
            except RuntimeError:
                on_loop = False
            clear_calls.append((threading.current_thread() is threading.main_thread(), on_loop))
            return original_clear()

        service.queue.clear = recording_clear

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            first = asyncio.create_task(client.post("/try-on", json=_body()))
            second = asyncio.create_task(client.post("/try-on", json=_body()))
            for _ in range(100):
                if service.queue.stats().queue_length == 1:
                    break
                await asyncio.sleep(0.01)
            self.assertEqual(service.queue.stats().processing, 1)
            self.assertEqual(service.queue.stats().queue_length, 1)

            cleared = await client.post("/try-on/queue/clear")
            self.assertEqual(cleared.json(), {"cleared": 1})

            # the waiting request resolves before the admitted one is released
            done, pending = await asyncio.wait({first, second}, timeout=2, return_when=asyncio.FIRST_COMPLETED)
            self.assertEqual(len(done), 1)
            self.assertEqual(done.pop().result().status_code, 503)

            upstream.gate.set()
            admitted_resp = await asyncio.wait_for(pending.pop(), timeout=2)
            self.assertEqual(admitted_resp.status_code, 200)

        self.assertEqual(clear_calls, [(True, True)])
        self.assertEqual(upstream.calls, 1)
