"""Tests for the Kroki renderer, using an in-process transport."""

import httpx
import pytest

from statechart_backend.renderer import KrokiRenderer, RenderError


class FakeKroki:
    """Records requests and answers with a fixed response."""

    def __init__(self, status_code=200, text="<svg/>"):
        self.status_code = status_code
        self.text = text
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, text=self.text)


def make_renderer(fake, base_url="http://kroki.test/"):
    return KrokiRenderer(base_url=base_url, transport=httpx.MockTransport(fake))


class TestKrokiRenderer:

    def test_posts_source_as_plain_text(self):
        fake = FakeKroki()
        result = make_renderer(fake).render("@startuml\n@enduml")

        assert result.svg == "<svg/>"
        assert not result.from_cache
        request = fake.requests[0]
        assert str(request.url) == "http://kroki.test/plantuml/svg"
        assert request.method == "POST"
        assert request.headers["content-type"] == "text/plain"
        assert request.content == b"@startuml\n@enduml"

    def test_second_render_is_cached(self):
        fake = FakeKroki()
        renderer = make_renderer(fake)

        renderer.render("A")
        result = renderer.render("A")

        assert result.from_cache
        assert len(fake.requests) == 1
        assert renderer.cache_size == 1

    def test_clear_cache_forces_new_request(self):
        fake = FakeKroki()
        renderer = make_renderer(fake)
        renderer.render("A")
        renderer.clear_cache()

        assert renderer.cache_size == 0
        assert not renderer.render("A").from_cache
        assert len(fake.requests) == 2

    def test_error_status_raises(self):
        fake = FakeKroki(status_code=400, text="Syntax Error?")
        renderer = make_renderer(fake)

        with pytest.raises(RenderError) as exc_info:
            renderer.render("@startuml\nbroken\n@enduml")

        assert exc_info.value.status_code == 400
        assert exc_info.value.body == "Syntax Error?"
        assert str(exc_info.value) == "Kroki error: 400 - Syntax Error?"
        assert renderer.cache_size == 0

    def test_transport_failure_propagates(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        renderer = KrokiRenderer(base_url="http://kroki.test", transport=httpx.MockTransport(refuse))
        with pytest.raises(httpx.HTTPError):
            renderer.render("A")
