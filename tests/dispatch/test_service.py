"""Tests for settings parsing and composition of the dispatch service."""
import unittest

import pytest
from pydantic import ValidationError

from tryon.core.config import Settings
from tryon.services.dispatch.base import GenerationClient, ImagePayload
from tryon.services.dispatch.errors import NoCredentialsConfigured
from tryon.services.dispatch.gemini_client import GeminiTryOnClient
from tryon.services.dispatch.service import build_try_on_service


class EchoClient(GenerationClient):
    def __init__(self):
        self.credentials = []

    async def generate(self, model_image, outfit_image, credential):
        self.credentials.append(credential)
        return ImagePayload(model_image.data + outfit_image.data, "image/png")


def test_api_keys_split_and_deduplicated():
    s = Settings(gemini_api_keys="k1, k2\nk2,,\r\nk3 ")
    assert s.gemini_api_keys_list == ["k1", "k2", "k3"]


def test_non_positive_limits_rejected():
    with pytest.raises(ValidationError):
        Settings(queue_max_concurrent=0)
    with pytest.raises(ValidationError):
        Settings(request_timeout_seconds=0)
    with pytest.raises(ValidationError):
        Settings(generation_max_retries=-1)


def test_zero_credentials_refuse_to_build():
    with pytest.raises(NoCredentialsConfigured):
        build_try_on_service(Settings(gemini_api_keys=""))


def test_build_wires_tunables():
    s = Settings(
        gemini_api_keys="k1,k2",
        credential_min_spacing_seconds=0.25,
        credential_max_errors=5,
        credential_cooldown_seconds=12,
        queue_max_concurrent=4,
        request_timeout_seconds=9,
        queue_admit_delay_seconds=0,
        generation_max_retries=1,
        generation_retry_backoff_seconds=0.5,
        usage_warn_threshold=6,
        usage_fingerprint_prefix_bytes=32,
        gemini_image_model="gemini-x",
    )
    service = build_try_on_service(s)

    assert [c.identifier for c in service.pool.credentials] == ["k1", "k2"]
    assert service.pool.min_spacing == 0.25
    assert service.pool.max_errors == 5
    assert service.pool.cooldown == 12
    assert service.queue.max_concurrent == 4
    assert service.queue.request_timeout == 9
    assert service.runner.max_retries == 1
    assert service.runner.backoff_seconds == 0.5
    assert service.tracker.warn_threshold == 6
    assert service.tracker.prefix_bytes == 32
    assert isinstance(service.runner.client, GeminiTryOnClient)
    assert service.runner.client.model_name == "gemini-x"


class TestServiceEndToEnd(unittest.IsolatedAsyncioTestCase):
    async def test_generate_try_on_through_all_layers(self):
        client = EchoClient()
        service = build_try_on_service(
            Settings(gemini_api_keys="k1,k2", queue_admit_delay_seconds=0, usage_warn_threshold=2),
            client=client,
        )
        person = ImagePayload(b"person", "image/png")
        outfit = ImagePayload(b"outfit", "image/jpeg")

        first = await service.generate_try_on(person, outfit)
        second = await service.generate_try_on(person, outfit)

        self.assertEqual(first.image.data, b"personoutfit")
        self.assertIsNone(first.warning)
        self.assertIsNotNone(second.warning)
        self.assertEqual(client.credentials, ["k1", "k2"])

        stats = service.stats()
        self.assertEqual(stats["credentials"]["total_requests"], 2)
        self.assertEqual(stats["usage"]["combinations"], 1)
        self.assertEqual(stats["queue"]["processing"], 0)
        await service.shutdown()
