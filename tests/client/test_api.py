import json

import httpx
import pytest

from timetrack.client.api import TimeTrackerAPI
from timetrack.exceptions import AuthorizationError, ConflictError, NetworkError, NotFoundError, ValidationError


def envelope(status, data=None, message="ok", error=None):
    return {"statusCode": status, "success": status < 400, "data": data, "message": message, "error": error}


def make_api(handler):
    return TimeTrackerAPI("http://tracker/user", token="abc", transport=httpx.MockTransport(handler))


async def test_returns_envelope_data_and_sends_token():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["url"] = str(request.url)
        return httpx.Response(200, json=envelope(200, {"isRunning": True}))

    api = make_api(handler)
    data = await api.get_elapsed_time("p1")
    await api.aclose()

    assert data == {"isRunning": True}
    assert seen["auth"] == "Bearer abc"
    assert seen["url"] == "http://tracker/user/getElapsedTime?projectId=p1"


async def test_mutation_bodies():
    bodies = []

    def handler(request):
        bodies.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(200, json=envelope(200, {}))

    api = make_api(handler)
    await api.check_in("p1", "s1")
    await api.pause_or_resume("p1")
    await api.check_out("p1")

    assert bodies == [
        ("POST", "/user/checkIn", {"projectId": "p1", "subTaskId": "s1"}),
        ("PUT", "/user/pauseOrResume", {"projectId": "p1"}),
        ("PUT", "/user/checkOut", {"projectId": "p1"}),
    ]


@pytest.mark.parametrize("status, error, expected", [
    (400, "conflict", ConflictError),
    (400, "validation_error", ValidationError),
    (403, "authorization_error", AuthorizationError),
    (404, "not_found", NotFoundError),
    (404, None, NotFoundError),
    (401, None, AuthorizationError),
    (503, None, NetworkError),
])
async def test_errors_map_to_taxonomy(status, error, expected):
    api = make_api(lambda request: httpx.Response(status, json=envelope(status, message="Server says no", error=error)))

    with pytest.raises(expected) as info:
        await api.check_out("p1")
    assert info.value.message == "Server says no"


async def test_transport_failure_is_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    api = make_api(handler)

    with pytest.raises(NetworkError):
        await api.get_elapsed_time("p1")
