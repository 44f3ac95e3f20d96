"""
Tests for the waste classifier client
"""
import time

import httpx
import pytest

import sys
sys.path.insert(0, '.')

from src.core.errors import ErrorCode
from src.ml.verdict_cache import FingerprintCache
from src.ml.waste_classifier import (
    ClassificationError,
    ConfidenceTier,
    Detection,
    WasteClassifier,
    build_verdict,
    extract_detections,
    tier_for,
)


def images_payload(*detections):
    return {"images": [{"results": [
        {"class": cls, "name": "waste" if cls == 1 else "clean", "confidence": conf}
        for cls, conf in detections
    ]}]}


def predictions_payload(*detections):
    return {"predictions": [{"detections": [
        {"class": cls, "confidence": conf} for cls, conf in detections
    ]}]}


def make_classifier(handler, **kwargs):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    kwargs.setdefault("api_key", "test-key")
    return WasteClassifier(http_client=client, **kwargs)


class TestVerdictRules:
    """Test suite for verdict normalization."""

    def test_tier_boundaries(self):
        assert tier_for(0.0) == ConfidenceTier.UNVERIFIED
        assert tier_for(0.649) == ConfidenceTier.UNVERIFIED
        assert tier_for(0.65) == ConfidenceTier.MEDIUM
        assert tier_for(0.849) == ConfidenceTier.MEDIUM
        assert tier_for(0.85) == ConfidenceTier.HIGH
        assert tier_for(1.0) == ConfidenceTier.HIGH

    def test_no_detections_is_not_waste(self):
        verdict = build_verdict([])

        assert verdict.is_waste is False
        assert verdict.confidence == 0.0
        assert verdict.tier == ConfidenceTier.UNVERIFIED

    def test_non_waste_class_is_ignored(self):
        verdict = build_verdict([Detection(class_id=0, confidence=0.99)])

        assert verdict.is_waste is False
        assert verdict.confidence == 0.0

    def test_max_waste_confidence_wins(self):
        verdict = build_verdict([
            Detection(class_id=1, confidence=0.4),
            Detection(class_id=1, confidence=0.9),
            Detection(class_id=0, confidence=0.95),
        ])

        assert verdict.is_waste is True
        assert verdict.confidence == 0.9
        assert verdict.tier == ConfidenceTier.HIGH
        assert verdict.is_verified_waste is True

    def test_waste_threshold_is_inclusive(self):
        assert build_verdict([Detection(class_id=1, confidence=0.25)]).is_waste is True
        assert build_verdict([Detection(class_id=1, confidence=0.2499)]).is_waste is False

    def test_low_confidence_waste_is_unverified_tier(self):
        verdict = build_verdict([Detection(class_id=1, confidence=0.5)])

        assert verdict.is_waste is True
        assert verdict.tier == ConfidenceTier.UNVERIFIED
        assert verdict.label == "waste"

    def test_snapshot_fields(self):
        snapshot = build_verdict([Detection(class_id=1, confidence=0.7)]).snapshot()

        assert snapshot == {"is_waste": True, "confidence": 0.7, "tier": "medium"}


class TestExtractDetections:
    """Test suite for response shape handling."""

    def test_images_shape(self):
        detections = extract_detections(images_payload((1, 0.8), (0, 0.3)))

        assert [d.class_id for d in detections] == [1, 0]
        assert detections[0].name == "waste"

    def test_predictions_shape(self):
        detections = extract_detections(predictions_payload((1, 0.6)))

        assert len(detections) == 1
        assert detections[0].confidence == 0.6

    def test_unknown_shape_means_no_detections(self):
        assert extract_detections({"status": "ok"}) == []

    def test_malformed_detection_skipped(self):
        payload = {"images": [{"results": [{"class": 1}, {"class": 1, "confidence": 0.7}]}]}

        assert len(extract_detections(payload)) == 1

    def test_non_list_detections_rejected(self):
        with pytest.raises(ValueError):
            extract_detections({"images": [{"results": "oops"}]})


class TestWasteClassifier:
    """Test suite for the remote classification call."""

    def test_sends_fixed_inference_parameters(self):
        seen = {}

        def handler(request):
            seen["api_key"] = request.headers.get("x-api-key")
            seen["body"] = request.read()
            return httpx.Response(200, json=images_payload((1, 0.9)))

        with make_classifier(handler, model_url="https://hub.example.com/models/abc") as classifier:
            verdict = classifier.classify(b"image-bytes")

        assert verdict.is_waste is True
        assert seen["api_key"] == "test-key"
        assert b'name="imgsz"' in seen["body"]
        assert b"640" in seen["body"]
        assert b"0.45" in seen["body"]
        assert b"https://hub.example.com/models/abc" in seen["body"]
        assert b"image-bytes" in seen["body"]

    def test_predictions_shape_end_to_end(self):
        classifier = make_classifier(
            lambda request: httpx.Response(200, json=predictions_payload((1, 0.7)))
        )

        verdict = classifier.classify(b"x")

        assert verdict.confidence == 0.7
        assert verdict.tier == ConfidenceTier.MEDIUM

    def test_cache_prevents_second_call(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=images_payload((1, 0.9)))

        classifier = make_classifier(handler, cache=FingerprintCache(ttl_seconds=300))

        first = classifier.classify(b"same-image")
        second = classifier.classify(b"same-image")

        assert first == second
        assert len(calls) == 1

    def test_expired_verdict_calls_detector_again(self):
        calls = []
        now = [1000.0]

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=images_payload((1, 0.9)))

        cache = FingerprintCache(ttl_seconds=300, clock=lambda: now[0])
        classifier = make_classifier(handler, cache=cache)

        classifier.classify(b"same-image")
        now[0] += 299
        classifier.classify(b"same-image")
        now[0] += 2
        classifier.classify(b"same-image")

        assert len(calls) == 2

    def test_different_images_are_not_shared(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=images_payload((1, 0.9)))

        classifier = make_classifier(handler, cache=FingerprintCache(ttl_seconds=300))
        classifier.classify(b"one")
        classifier.classify(b"two")

        assert len(calls) == 2

    def test_failures_are_not_cached(self):
        responses = [httpx.Response(500, text="boom"), httpx.Response(200, json=images_payload((1, 0.9)))]

        classifier = make_classifier(
            lambda request: responses.pop(0), cache=FingerprintCache(ttl_seconds=300)
        )

        with pytest.raises(ClassificationError):
            classifier.classify(b"img")
        assert classifier.classify(b"img").is_waste is True

    def test_upstream_error_status(self):
        classifier = make_classifier(lambda request: httpx.Response(502, text="bad gateway"))

        with pytest.raises(ClassificationError) as exc:
            classifier.classify(b"img")

        assert exc.value.code == ErrorCode.SERVICE_ERROR
        assert exc.value.upstream_status == 502
        assert "API_ERROR: 502" in exc.value.message

    def test_non_json_body(self):
        classifier = make_classifier(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(ClassificationError) as exc:
            classifier.classify(b"img")

        assert exc.value.code == ErrorCode.SERVICE_ERROR

    def test_connection_refused_is_service_down(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ClassificationError) as exc:
            make_classifier(handler).classify(b"img")

        assert exc.value.code == ErrorCode.SERVICE_DOWN

    def test_transport_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ClassificationError) as exc:
            make_classifier(handler).classify(b"img")

        assert exc.value.code == ErrorCode.SERVICE_TIMEOUT

    def test_deadline_returns_without_waiting_for_detector(self):
        def handler(request):
            time.sleep(1.0)
            return httpx.Response(200, json=images_payload((1, 0.9)))

        classifier = make_classifier(handler, timeout=0.05)

        started = time.monotonic()
        with pytest.raises(ClassificationError) as exc:
            classifier.classify(b"img")
        elapsed = time.monotonic() - started

        assert exc.value.code == ErrorCode.SERVICE_TIMEOUT
        assert elapsed < 0.5

    def test_missing_api_key(self):
        classifier = make_classifier(
            lambda request: httpx.Response(200, json={}), api_key=None
        )

        with pytest.raises(ClassificationError) as exc:
            classifier.classify(b"img")

        assert exc.value.code == ErrorCode.SERVICE_ERROR

    def test_malformed_detections_field(self):
        classifier = make_classifier(
            lambda request: httpx.Response(200, json={"images": [{"results": {"a": 1}}]})
        )

        with pytest.raises(ClassificationError) as exc:
            classifier.classify(b"img")

        assert exc.value.code == ErrorCode.SERVICE_ERROR
