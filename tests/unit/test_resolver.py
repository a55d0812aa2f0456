from toolbox.core.resolver import ReferenceResolver
from toolbox.modules.artifacts.models import RequestContext


def test_uses_request_scheme_and_host():
    context = RequestContext(scheme="http", host="localhost:5000")
    url = ReferenceResolver().resolve(context, "/outputs/merged.pdf")
    assert url == "http://localhost:5000/outputs/merged.pdf"


def test_forwarded_headers_win():
    context = RequestContext(
        scheme="http",
        host="10.0.0.5:5000",
        forwarded_proto="HTTPS",
        forwarded_host="tools.example.com",
    )
    url = ReferenceResolver().resolve(context, "outputs/a.gif")
    assert url == "https://tools.example.com/outputs/a.gif"


def test_configured_base_url_overrides_request():
    context = RequestContext(scheme="http", host="internal", forwarded_proto="https")
    url = ReferenceResolver("https://cdn.example.com/").resolve(context, "/outputs/a.mp3")
    assert url == "https://cdn.example.com/outputs/a.mp3"
