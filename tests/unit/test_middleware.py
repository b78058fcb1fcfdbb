"""
Unit tests for the middleware pipeline and each middleware.
"""

import gzip
import logging
import threading
import time
from http import HTTPStatus

import pytest

from imaginary.config import ThrottleConfig
from imaginary.http.response import HTTPResponse, ResponseBuilder, ok
from imaginary.middleware import (
    APIKeyMiddleware,
    CacheControlMiddleware,
    CompressionMiddleware,
    CORSConfig,
    CORSMiddleware,
    LoggingMiddleware,
    Middleware,
    MiddlewarePipeline,
    ThrottleMiddleware,
    cache_control_value,
)


def echo(request) -> HTTPResponse:
    return ok({"path": request.path})


class Tagger(Middleware):
    def __init__(self, tag, trail):
        self.tag = tag
        self.trail = trail

    def __call__(self, request, next):
        self.trail.append(f"{self.tag}:in")
        response = next(request)
        self.trail.append(f"{self.tag}:out")
        return response


class TestMiddlewarePipeline:
    def test_first_added_is_outermost(self, make_request):
        trail = []
        pipeline = MiddlewarePipeline().add(Tagger("a", trail)).add(Tagger("b", trail))

        pipeline.wrap(echo)(make_request("/"))

        assert trail == ["a:in", "b:in", "b:out", "a:out"]

    def test_empty_pipeline_is_handler(self, make_request):
        assert MiddlewarePipeline().wrap(echo)(make_request("/x")).status == HTTPStatus.OK

    def test_names(self):
        pipeline = MiddlewarePipeline().add(LoggingMiddleware()).add(CORSMiddleware())

        assert pipeline.names == ["LoggingMiddleware", "CORSMiddleware"]
        assert len(pipeline) == 2


class TestLoggingMiddleware:
    def test_access_line(self, make_request, caplog):
        with caplog.at_level(logging.INFO, logger="imaginary.access"):
            response = LoggingMiddleware()(make_request("/health"), echo)

        assert '"GET /health" 200' in caplog.text
        assert len(response.headers["X-Request-ID"]) == 8

    def test_skip_paths(self, make_request, caplog):
        with caplog.at_level(logging.INFO, logger="imaginary.access"):
            LoggingMiddleware(skip_paths=["/health"])(make_request("/health"), echo)

        assert [r for r in caplog.records if r.name == "imaginary.access"] == []

    def test_exception_logged_and_raised(self, make_request, caplog):
        def boom(request):
            raise RuntimeError("engine crashed")

        with caplog.at_level(logging.ERROR, logger="imaginary.access"):
            with pytest.raises(RuntimeError):
                LoggingMiddleware()(make_request("/resize"), boom)

        assert "engine crashed" in caplog.text


class TestCORSMiddleware:
    def test_adds_headers(self, make_request):
        response = CORSMiddleware()(make_request("/", headers={"Origin": "https://a.example"}), echo)

        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert "Origin" in response.headers["Vary"]

    def test_preflight(self, make_request):
        request = make_request("/resize", method="OPTIONS", headers={
            "Origin": "https://a.example",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "API-Key",
        })
        called = []

        response = CORSMiddleware()(request, lambda r: called.append(r) or echo(r))

        assert response.status == HTTPStatus.NO_CONTENT
        assert called == []
        assert "POST" in response.headers["Access-Control-Allow-Methods"]
        assert "API-Key" in response.headers["Access-Control-Allow-Headers"]
        assert response.headers["Access-Control-Max-Age"] == "86400"

    def test_plain_options_passes_through(self, make_request):
        """OPTIONS without CORS headers is not a preflight."""
        response = CORSMiddleware()(make_request("/", method="OPTIONS"), echo)

        assert response.status == HTTPStatus.OK

    def test_restricted_origins(self, make_request):
        middleware = CORSMiddleware(CORSConfig(allow_origins=["https://ok.example"]))

        allowed = middleware(make_request("/", headers={"Origin": "https://ok.example"}), echo)
        refused = middleware(make_request("/", headers={"Origin": "https://evil.example"}), echo)

        assert allowed.headers["Access-Control-Allow-Origin"] == "https://ok.example"
        assert "Access-Control-Allow-Origin" not in refused.headers

    def test_credentials_echo_origin(self, make_request):
        middleware = CORSMiddleware(CORSConfig(allow_credentials=True))
        response = middleware(make_request("/", headers={"Origin": "https://a.example"}), echo)

        assert response.headers["Access-Control-Allow-Origin"] == "https://a.example"
        assert response.headers["Access-Control-Allow-Credentials"] == "true"


class TestCacheControlMiddleware:
    """Cache-Control derived from -http-cache-ttl."""

    def test_values(self):
        assert cache_control_value(0) == "private, no-cache, no-store, must-revalidate"
        assert cache_control_value(60) == "public, s-maxage=60, max-age=60, no-transform"

    def test_ttl_zero_prevents_caching(self, make_request):
        response = CacheControlMiddleware(0)(make_request("/mount/a.jpg"), echo)

        assert response.headers["Cache-Control"] == "private, no-cache, no-store, must-revalidate"
        assert "Expires" not in response.headers

    def test_positive_ttl(self, make_request):
        response = CacheControlMiddleware(3600)(make_request("/mount/a.jpg"), echo)

        assert response.headers["Cache-Control"] == "public, s-maxage=3600, max-age=3600, no-transform"
        assert response.headers["Expires"].endswith("GMT")

    @pytest.mark.parametrize("path", ["/", "/health"])
    def test_public_paths_untouched(self, make_request, path):
        response = CacheControlMiddleware(60)(make_request(path), echo)

        assert "Cache-Control" not in response.headers

    def test_only_get(self, make_request):
        response = CacheControlMiddleware(60)(make_request("/resize", method="POST"), echo)

        assert "Cache-Control" not in response.headers

    def test_handler_header_kept(self, make_request):
        def no_store(request):
            return ResponseBuilder().header("Cache-Control", "no-store").text("x").build()

        response = CacheControlMiddleware(60)(make_request("/x"), no_store)

        assert response.headers["Cache-Control"] == "no-store"

    def test_negative_ttl_rejected(self):
        with pytest.raises(ValueError):
            CacheControlMiddleware(-1)


class TestAPIKeyMiddleware:
    """Shared-secret authorization."""

    def test_header_accepted(self, make_request):
        request = make_request("/resize", headers={"API-Key": "s3cret"})

        assert APIKeyMiddleware("s3cret")(request, echo).status == HTTPStatus.OK

    def test_query_accepted(self, make_request):
        request = make_request("/resize", query={"key": "s3cret"})

        assert APIKeyMiddleware("s3cret")(request, echo).status == HTTPStatus.OK

    def test_missing_key(self, make_request):
        response = APIKeyMiddleware("s3cret")(make_request("/resize"), echo)

        assert response.status == HTTPStatus.UNAUTHORIZED

    def test_wrong_key(self, make_request):
        request = make_request("/resize", headers={"API-Key": "guess"})

        assert APIKeyMiddleware("s3cret")(request, echo).status == HTTPStatus.UNAUTHORIZED

    @pytest.mark.parametrize("path", ["/", "/health"])
    def test_public_paths(self, make_request, path):
        assert APIKeyMiddleware("s3cret")(make_request(path), echo).status == HTTPStatus.OK

    def test_empty_key_rejected(self):
        with pytest.raises(ValueError):
            APIKeyMiddleware("")


class TestThrottleMiddleware:
    """Concurrency slots plus a bounded wait queue."""

    def _blocking_handler(self, release: threading.Event, entered: threading.Semaphore):
        def handler(request):
            entered.release()
            release.wait(timeout=5.0)
            return ok({})
        return handler

    @staticmethod
    def _wait_for(predicate, timeout=5.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return False

    def test_under_limit_passes(self, make_request):
        throttle = ThrottleMiddleware(ThrottleConfig(concurrency=2, burst=1))

        assert throttle(make_request("/"), echo).status == HTTPStatus.OK

    def test_queue_full_rejected(self, make_request):
        throttle = ThrottleMiddleware(ThrottleConfig(concurrency=1, burst=1))
        release = threading.Event()
        entered = threading.Semaphore(0)
        handler = self._blocking_handler(release, entered)
        results = []

        def call():
            results.append(throttle(make_request("/resize"), handler).status)

        workers = [threading.Thread(target=call) for _ in range(2)]
        workers[0].start()
        assert entered.acquire(timeout=5.0)        # first request holds the slot
        workers[1].start()
        assert self._wait_for(lambda: throttle.waiting == 1)   # second one queued

        rejected = throttle(make_request("/resize"), handler)

        release.set()
        for worker in workers:
            worker.join(timeout=5.0)

        assert rejected.status == HTTPStatus.TOO_MANY_REQUESTS
        assert rejected.headers["Retry-After"] == "1"
        assert results == [HTTPStatus.OK, HTTPStatus.OK]
        assert throttle.waiting == 0

    def test_wait_timeout(self, make_request):
        throttle = ThrottleMiddleware(ThrottleConfig(concurrency=1, burst=5), wait_timeout=0.05)
        release = threading.Event()
        entered = threading.Semaphore(0)
        holder = threading.Thread(
            target=throttle, args=(make_request("/a"), self._blocking_handler(release, entered))
        )
        holder.start()
        assert entered.acquire(timeout=5.0)

        response = throttle(make_request("/b"), echo)

        release.set()
        holder.join(timeout=5.0)
        assert response.status == HTTPStatus.SERVICE_UNAVAILABLE

    def test_slot_released_on_error(self, make_request):
        throttle = ThrottleMiddleware(ThrottleConfig(concurrency=1, burst=1), wait_timeout=0.05)

        def boom(request):
            raise RuntimeError("engine crashed")

        with pytest.raises(RuntimeError):
            throttle(make_request("/"), boom)

        assert throttle(make_request("/"), echo).status == HTTPStatus.OK

    def test_disabled_config_rejected(self):
        with pytest.raises(ValueError):
            ThrottleMiddleware(ThrottleConfig(concurrency=0))


class TestCompressionMiddleware:
    """gzip for text-like bodies."""

    @staticmethod
    def big_json(request):
        return ResponseBuilder().json({"data": "x" * 4096}).build()

    def test_compresses(self, make_request):
        request = make_request("/", headers={"Accept-Encoding": "gzip, deflate"})
        response = CompressionMiddleware()(request, self.big_json)

        assert response.headers["Content-Encoding"] == "gzip"
        assert b"x" * 4096 in gzip.decompress(response.body)
        assert "Accept-Encoding" in response.headers["Vary"]

    def test_client_without_gzip(self, make_request):
        response = CompressionMiddleware()(make_request("/"), self.big_json)

        assert "Content-Encoding" not in response.headers

    def test_gzip_refused_with_q0(self, make_request):
        request = make_request("/", headers={"Accept-Encoding": "gzip;q=0"})

        assert "Content-Encoding" not in CompressionMiddleware()(request, self.big_json).headers

    def test_small_body_skipped(self, make_request):
        request = make_request("/", headers={"Accept-Encoding": "gzip"})

        assert "Content-Encoding" not in CompressionMiddleware()(request, echo).headers

    def test_images_skipped(self, make_request):
        def jpeg(request):
            return ResponseBuilder().body(b"\xff" * 4096, "image/jpeg").build()

        request = make_request("/", headers={"Accept-Encoding": "gzip"})

        assert "Content-Encoding" not in CompressionMiddleware()(request, jpeg).headers
