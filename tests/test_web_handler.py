from decimal import Decimal

import pytest
import pytest_asyncio
from aiohttp import test_utils

from api.web_handler import WebHandler, RateLimiter


def signupBody(n, sponsorId=None, **overrides):
    body = {
        "displayName": f"User {n}",
        "email": f"user{n}@gmail.com",
        "password": "secret123",
        "phone": f"+1555200{n:04d}",
        "walletAddress": "0x" + f"{n:040x}",
    }
    if sponsorId:
        body["sponsorId"] = sponsorId
    body.update(overrides)
    return body


@pytest_asyncio.fixture
async def client(session_factory, identity):
    handler = WebHandler(
        session_factory,
        identity,
        identity.signer,
        rate_limiter=RateLimiter(max_requests=10, time_window=900)
    )
    async with test_utils.TestClient(test_utils.TestServer(handler.app)) as client:
        yield client


def bearer(identity, memberId):
    return {"Authorization": f"Bearer {identity.signer.issue(memberId)}"}


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status == 200
    assert (await response.json())["status"] == "ok"


@pytest.mark.asyncio
async def test_signup_success(client, identity):
    response = await client.post("/signup", json=signupBody(1))
    data = await response.json()

    assert response.status == 201
    assert data["success"] is True
    assert data["memberId"] == "uid-1"
    assert identity.signer.verify(data["sessionToken"]) == "uid-1"
    assert data["memberSummary"]["treeLevel"] == 1


@pytest.mark.asyncio
async def test_signup_missing_fields(client):
    response = await client.post("/signup", json={"email": "x@gmail.com"})
    data = await response.json()

    assert response.status == 400
    assert data["success"] is False
    assert data["error"]["code"] == "invalid-argument"


@pytest.mark.asyncio
async def test_signup_duplicate(client):
    await client.post("/signup", json=signupBody(1))
    response = await client.post("/signup", json=signupBody(2, email="user1@gmail.com"))

    assert response.status == 409
    assert (await response.json())["error"]["code"] == "already-exists"


@pytest.mark.asyncio
async def test_signup_unknown_sponsor(client):
    response = await client.post("/signup", json=signupBody(1, sponsorId="ghost"))
    assert response.status == 404
    assert (await response.json())["error"]["code"] == "not-found"


@pytest.mark.asyncio
async def test_signup_rate_limit(session_factory, identity):
    handler = WebHandler(session_factory, identity, identity.signer, rate_limiter=RateLimiter(2, 900))
    async with test_utils.TestClient(test_utils.TestServer(handler.app)) as client:
        for _ in range(2):
            response = await client.post("/signup", json={})
            assert response.status == 400

        response = await client.post("/signup", json=signupBody(1))
        data = await response.json()

    assert response.status == 429
    assert data["error"]["code"] == "resource-exhausted"
    assert identity.accounts == {}


@pytest.mark.asyncio
async def test_claim_requires_token(client):
    response = await client.post("/claim", json={})
    assert response.status == 400

    response = await client.post("/claim", json={}, headers={"Authorization": "Bearer forged.token"})
    assert response.status == 400


@pytest.mark.asyncio
async def test_claim_flow(client, identity):
    sponsor = await (await client.post("/signup", json=signupBody(1))).json()
    headers = {"Authorization": f"Bearer {sponsor['sessionToken']}"}

    response = await client.post("/claim", json={}, headers=headers)
    assert response.status == 412
    assert (await response.json())["error"]["code"] == "failed-precondition"

    await client.post("/signup", json=signupBody(2, sponsorId=sponsor["memberId"]))
    await client.post("/signup", json=signupBody(3, sponsorId=sponsor["memberId"]))

    response = await client.post("/claim", json={"rank": "azurite"}, headers=headers)
    data = await response.json()

    assert response.status == 200
    assert data == {"success": True, "claimedAmount": "0.50"}


@pytest.mark.asyncio
async def test_activate_rank(client, identity, add_member, fetch):
    add_member("A", available=Decimal("25"))

    response = await client.post("/activate", json={"rank": "ruby"}, headers=bearer(identity, "A"))
    data = await response.json()

    assert response.status == 200
    assert data["success"] is True
    assert data["distribution"]["status"] == "distributed"
    member = fetch("A")
    assert member.rank == "ruby"
    assert member.availableBalance == Decimal("5.00")


@pytest.mark.asyncio
async def test_activate_insufficient_balance(client, identity, add_member):
    add_member("A", available=Decimal("1"))

    response = await client.post("/activate", json={"rank": "pearl"}, headers=bearer(identity, "A"))

    assert response.status == 412
    assert (await response.json())["error"]["message"] == "Insufficient wallet balance"


@pytest.mark.asyncio
async def test_activate_requires_rank(client, identity, add_member):
    add_member("A")
    response = await client.post("/activate", json={}, headers=bearer(identity, "A"))
    assert response.status == 400


@pytest.mark.asyncio
async def test_forwarded_header_ignored_without_trusted_proxy(session_factory, identity):
    handler = WebHandler(session_factory, identity, identity.signer, rate_limiter=RateLimiter(1, 900))
    async with test_utils.TestClient(test_utils.TestServer(handler.app)) as client:
        await client.post("/signup", json={}, headers={"X-Forwarded-For": "10.0.0.1"})
        response = await client.post("/signup", json={}, headers={"X-Forwarded-For": "10.0.0.2"})

    assert response.status == 429


@pytest.mark.asyncio
async def test_forwarded_header_from_trusted_proxy(session_factory, identity):
    handler = WebHandler(
        session_factory,
        identity,
        identity.signer,
        rate_limiter=RateLimiter(1, 900),
        trusted_proxies=["127.0.0.1"]
    )
    async with test_utils.TestClient(test_utils.TestServer(handler.app)) as client:
        first = await client.post("/signup", json={}, headers={"X-Forwarded-For": "10.0.0.1"})
        other = await client.post("/signup", json={}, headers={"X-Forwarded-For": "10.0.0.2"})
        again = await client.post("/signup", json={}, headers={"X-Forwarded-For": "10.0.0.9, 10.0.0.1"})

    assert first.status == 400
    assert other.status == 400
    assert again.status == 429


def test_rate_limiter_window_slides():
    now = [0.0]
    limiter = RateLimiter(max_requests=2, time_window=10, clock=lambda: now[0])

    assert limiter.is_allowed("a")
    assert limiter.is_allowed("a")
    assert not limiter.is_allowed("a")
    assert limiter.is_allowed("b")

    now[0] = 10.0
    assert limiter.is_allowed("a")
    assert limiter.prune() == 1
    assert list(limiter.attempts) == ["a"]

    now[0] = 25.0
    assert limiter.prune() == 1
    assert limiter.attempts == {}
