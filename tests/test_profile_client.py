"""
Tests for the profile service client.
"""
import httpx
import pytest

from mappalette_gateway.correlation import request_id_var
from mappalette_gateway.profile_client import ProfileClient

USER_ID = "0b9f3b9e-6a4b-4c1e-9a57-7f0f4a8a2e11"
VIEWER_ID = "5d1c7a7e-2f64-4a8e-8e57-1b2f0cb0a9d4"


class RecordingTransport(httpx.MockTransport):
    """Mock transport that keeps every request it served."""

    def __init__(self, status_code=200, body=None):
        self.requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return httpx.Response(status_code, json=body if body is not None else {"path": request.url.path})

        super().__init__(handler)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method, path",
    [
        ("get_user_profile", f"/api/profile/user/{USER_ID}"),
        ("get_user_followers", f"/api/profile/user/{USER_ID}/followers"),
        ("get_user_following", f"/api/profile/user/{USER_ID}/following"),
    ],
)
async def test_endpoints(method, path):
    """Test each operation issues one GET to its endpoint."""
    transport = RecordingTransport()
    async with ProfileClient(base_url="http://profile.test/api", transport=transport) as client:
        body = await getattr(client, method)(USER_ID)

    assert body == {"path": path}
    assert len(transport.requests) == 1
    assert transport.requests[0].method == "GET"
    assert "currentUserId" not in transport.requests[0].url.params


@pytest.mark.asyncio
async def test_current_user_id_passed_as_query():
    transport = RecordingTransport()
    async with ProfileClient(base_url="http://profile.test/api", transport=transport) as client:
        await client.get_user_followers(USER_ID, current_user_id=VIEWER_ID)

    assert transport.requests[0].url.params["currentUserId"] == VIEWER_ID


@pytest.mark.asyncio
async def test_body_returned_verbatim():
    remote = {"user": {"id": USER_ID}, "posts": [], "isFollowing": False, "extra": [1, 2]}
    transport = RecordingTransport(body=remote)
    async with ProfileClient(base_url="http://profile.test/api", transport=transport) as client:
        assert await client.get_user_profile(USER_ID) == remote


@pytest.mark.asyncio
async def test_remote_404_propagates():
    """Test a remote 404 raises instead of returning a value."""
    transport = RecordingTransport(status_code=404, body={"message": "User profile not found"})
    async with ProfileClient(base_url="http://profile.test/api", transport=transport) as client:
        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await client.get_user_profile(USER_ID)

    assert exc_info.value.response.status_code == 404
    # No retry
    assert len(transport.requests) == 1


@pytest.mark.asyncio
async def test_network_error_propagates():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with ProfileClient(base_url="http://profile.test/api", transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(httpx.ConnectError):
            await client.get_user_following(USER_ID)


@pytest.mark.asyncio
async def test_forwards_request_id():
    transport = RecordingTransport()
    token = request_id_var.set("req-42")
    try:
        async with ProfileClient(base_url="http://profile.test/api", transport=transport) as client:
            await client.get_user_profile(USER_ID)
    finally:
        request_id_var.reset(token)

    assert transport.requests[0].headers["X-Request-ID"] == "req-42"


@pytest.mark.asyncio
async def test_user_id_escaped_in_path():
    """Test path separators in the id cannot reach another downstream route."""
    transport = RecordingTransport()
    async with ProfileClient(base_url="http://profile.test/api", transport=transport) as client:
        await client.get_user_followers("../admin?x=1")

    assert transport.requests[0].url.raw_path == b"/api/profile/user/..%2Fadmin%3Fx%3D1/followers"
    assert "x" not in transport.requests[0].url.params
