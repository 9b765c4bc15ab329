"""Tests for the external microservice clients."""

import json

import httpx
import pytest

from config import ServicesConfig
from services import DashboardServices, ServiceClient, ServiceError

CONFIG = ServicesConfig(
    email_service_url="http://email.test",
    canvas_service_url="http://canvas.test",
    calendar_service_url="http://calendar.test/",
    vector_db_service_url="http://vector.test",
)


def recording_transport(status=200, body=None, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, json=body if body is not None else {"ok": True})
    return httpx.MockTransport(handler)


@pytest.mark.parametrize("method,args,url,payload", [
    ("start_email_polling", ("tok", "u1"), "http://email.test/api/start-email-polling",
     {"user_id": "u1", "access_token": "tok"}),
    ("run_canvas_agent", ("tok", "u1"), "http://canvas.test/api/canvas_agent",
     {"user_id": "u1", "access_token": "tok"}),
    ("fetch_canvas_assignments", ("tok", "u1"), "http://canvas.test/api/start-fetch-assignments",
     {"user_id": "u1", "access_token": "tok"}),
    ("schedule_calendar", ("u1",), "http://calendar.test/schedule", {"user_id": "u1"}),
    ("create_vector_store", ("u1", "tok", "google"), "http://vector.test/api/create_vector_store",
     {"user_id": "u1", "access_token": "tok", "provider": "google"}),
])
async def test_posts_to_service_endpoints(method, args, url, payload):
    seen = []
    services = DashboardServices(CONFIG, transport=recording_transport(seen=seen))

    result = await getattr(services, method)(*args)

    assert result == {"ok": True}
    request, = seen
    assert request.method == "POST"
    assert str(request.url) == url
    assert json.loads(request.content) == payload


async def test_schedule_status_is_a_get_with_query():
    seen = []
    services = DashboardServices(CONFIG, transport=recording_transport(body={"status": "done"}, seen=seen))

    assert await services.get_schedule_status("u1") == {"status": "done"}
    assert seen[0].method == "GET"
    assert str(seen[0].url) == "http://calendar.test/schedule/status?user_id=u1"


async def test_error_body_message_is_relayed():
    client = ServiceClient("http://email.test", "email",
                           recording_transport(status=422, body={"message": "token expired"}))
    with pytest.raises(ServiceError) as exc:
        await client.post("/x", {}, timeout=1)
    assert exc.value.status == 422
    assert exc.value.message == "token expired"
    assert exc.value.data == {"message": "token expired"}


async def test_error_without_json_uses_reason_phrase():
    transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
    client = ServiceClient("http://email.test", "email", transport)
    with pytest.raises(ServiceError) as exc:
        await client.get("/x", {}, timeout=1)
    assert exc.value.status == 500
    assert exc.value.message == "Internal Server Error"


async def test_invalid_json_success_is_bad_gateway():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
    client = ServiceClient("http://email.test", "email", transport)
    with pytest.raises(ServiceError) as exc:
        await client.get("/x", {}, timeout=1)
    assert exc.value.status == 502


async def test_timeout_maps_to_408():
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    client = ServiceClient("http://canvas.test", "canvas", httpx.MockTransport(handler))
    with pytest.raises(ServiceError) as exc:
        await client.post("/x", {}, timeout=1)
    assert exc.value.status == 408
    assert exc.value.message == "Request timeout"


async def test_connection_error_maps_to_502():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = ServiceClient("http://canvas.test", "canvas", httpx.MockTransport(handler))
    with pytest.raises(ServiceError) as exc:
        await client.post("/x", {}, timeout=1)
    assert exc.value.status == 502


async def test_unconfigured_service_is_unavailable():
    services = DashboardServices(ServicesConfig(), transport=recording_transport())
    with pytest.raises(ServiceError) as exc:
        await services.schedule_calendar("u1")
    assert exc.value.status == 503
    assert exc.value.service == "calendar"
