"""HTTP surface of /mess-qr, exercised through the ASGI app."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest


def auth(user_id: uuid.UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer {user_id}"}


@pytest.mark.asyncio
async def test_health(api) -> None:
    r = await api.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "service": "mess-qr-svc"}


@pytest.mark.asyncio
async def test_missing_bearer_token(api) -> None:
    r = await api.post("/mess-qr/generate", json={"mess_id": str(uuid.uuid4())})
    assert r.status_code == 401


class TestGenerate:
    @pytest.mark.asyncio
    async def test_new_then_existing(self, api, seed) -> None:
        owner = uuid.uuid4()
        mess_id = await seed.mess(owner)

        r = await api.post("/mess-qr/generate", json={"mess_id": str(mess_id)}, headers=auth(owner))
        assert r.status_code == 200
        body = r.json()
        assert body["success"] is True
        assert body["message"] == "New QR code generated successfully"
        assert body["data"]["is_new"] is True
        assert body["data"]["image"].startswith("data:image/png;base64,")

        r = await api.post("/mess-qr/generate", json={"mess_id": str(mess_id)}, headers=auth(owner))
        again = r.json()
        assert again["message"] == "Existing QR code retrieved"
        assert again["data"]["is_new"] is False
        assert again["data"]["data"] == body["data"]["data"]

        r = await api.post(
            "/mess-qr/generate", json={"mess_id": str(mess_id), "force_regenerate": True}, headers=auth(owner)
        )
        rotated = r.json()
        assert rotated["data"]["is_new"] is True
        assert rotated["data"]["data"] != body["data"]["data"]

    @pytest.mark.asyncio
    async def test_errors(self, api, seed) -> None:
        owner = uuid.uuid4()
        mess_id = await seed.mess(owner)

        r = await api.post("/mess-qr/generate", json={}, headers=auth(owner))
        assert r.status_code == 400
        assert r.json()["detail"] == "Mess ID is required"

        r = await api.post("/mess-qr/generate", json={"mess_id": str(mess_id)}, headers=auth(uuid.uuid4()))
        assert r.status_code == 403

        r = await api.post("/mess-qr/generate", json={"mess_id": str(uuid.uuid4())}, headers=auth(owner))
        assert r.status_code == 404
        assert r.json()["detail"] == "Mess not found"


@pytest.mark.asyncio
async def test_delete(api, seed) -> None:
    owner = uuid.uuid4()
    mess_id = await seed.mess(owner)
    await api.post("/mess-qr/generate", json={"mess_id": str(mess_id)}, headers=auth(owner))

    r = await api.request("DELETE", "/mess-qr/delete", json={"mess_id": str(mess_id)}, headers=auth(uuid.uuid4()))
    assert r.status_code == 403

    r = await api.request("DELETE", "/mess-qr/delete", json={"mess_id": str(mess_id)}, headers=auth(owner))
    assert r.status_code == 200
    assert r.json() == {"success": True, "message": "QR code deleted successfully", "data": None}

    r = await api.get("/mess-qr/my-mess", headers=auth(owner))
    assert r.json()["data"]["qr_code"] is None


class TestVerifyMembership:
    @pytest.mark.asyncio
    async def test_scan_flow(self, api, seed) -> None:
        owner = uuid.uuid4()
        mess_id = await seed.mess(owner, name="Annapurna Mess")
        member = await seed.member("Ravi Kumar")
        outsider = await seed.member("Visitor", email=None)
        today = datetime.now(timezone.utc).date()
        await seed.subscribe(member, mess_id, start=today - timedelta(days=1), end=today + timedelta(days=29))
        token = (await api.post("/mess-qr/generate", json={"mess_id": str(mess_id)}, headers=auth(owner))).json()[
            "data"
        ]["data"]

        for _ in range(2):
            r = await api.post("/mess-qr/verify-membership", json={"qr_code_data": token}, headers=auth(member))
            assert r.status_code == 200
            body = r.json()
            assert body["success"] is True
            assert body["message"] == "Welcome Ravi Kumar! You have 1 active plan(s)."
            assert body["data"]["name"] == "Ravi Kumar"
            assert body["data"]["is_active"] is True
            assert body["data"]["active_plans"][0]["plan_name"] == "Lunch"
            assert body["data"]["active_plans"][0]["status"] == "active"

        r = await api.post("/mess-qr/verify-membership", json={"qr_code_data": token}, headers=auth(outsider))
        assert r.status_code == 200
        assert r.json() == {
            "success": False,
            "message": "You do not have an active membership at Annapurna Mess",
            "data": None,
        }

    @pytest.mark.asyncio
    async def test_invalid_code_is_not_an_http_error(self, api) -> None:
        r = await api.post(
            "/mess-qr/verify-membership", json={"qr_code_data": "hello", "source": "manual"}, headers=auth(uuid.uuid4())
        )
        assert r.status_code == 200
        assert r.json()["success"] is False
        assert r.json()["message"].startswith("Invalid QR code")

    @pytest.mark.asyncio
    async def test_missing_data(self, api) -> None:
        r = await api.post("/mess-qr/verify-membership", json={}, headers=auth(uuid.uuid4()))
        assert r.status_code == 400
        assert r.json()["detail"] == "QR code data is required"

    @pytest.mark.asyncio
    async def test_unknown_source_rejected(self, api) -> None:
        r = await api.post(
            "/mess-qr/verify-membership", json={"qr_code_data": "x", "source": "telepathy"}, headers=auth(uuid.uuid4())
        )
        assert r.status_code == 422

    @pytest.mark.asyncio
    async def test_member_cannot_claim_owner_source(self, api, seed) -> None:
        owner = uuid.uuid4()
        mess_id = await seed.mess(owner)
        member = await seed.member()
        today = datetime.now(timezone.utc).date()
        await seed.subscribe(member, mess_id, start=today - timedelta(days=1), end=today + timedelta(days=29))
        token = (await api.post("/mess-qr/generate", json={"mess_id": str(mess_id)}, headers=auth(owner))).json()[
            "data"
        ]["data"]

        r = await api.post(
            "/mess-qr/verify-membership", json={"qr_code_data": token, "source": "owner"}, headers=auth(member)
        )
        assert r.status_code == 422

        r = await api.post(
            "/mess-qr/verify-membership", json={"qr_code_data": token, "source": "manual"}, headers=auth(member)
        )
        assert r.status_code == 200
        assert r.json()["success"] is True


class TestVerifyUser:
    @pytest.mark.asyncio
    async def test_no_subscriptions(self, api, seed) -> None:
        owner = uuid.uuid4()
        mess_id = await seed.mess(owner)
        member = await seed.member()

        r = await api.post(
            "/mess-qr/verify-user",
            json={"mess_id": str(mess_id), "target_user_id": str(member)},
            headers=auth(owner),
        )
        assert r.status_code == 200
        assert r.json() == {"success": False, "message": "User does not have an active membership", "data": None}

    @pytest.mark.asyncio
    async def test_errors(self, api, seed) -> None:
        owner = uuid.uuid4()
        mess_id = await seed.mess(owner)

        r = await api.post("/mess-qr/verify-user", json={"mess_id": str(mess_id)}, headers=auth(owner))
        assert r.status_code == 400
        assert r.json()["detail"] == "Mess ID and Target User ID are required"

        r = await api.post(
            "/mess-qr/verify-user",
            json={"mess_id": str(mess_id), "target_user_id": str(uuid.uuid4())},
            headers=auth(uuid.uuid4()),
        )
        assert r.status_code == 403


@pytest.mark.asyncio
async def test_stats(api, seed) -> None:
    owner = uuid.uuid4()
    mess_id = await seed.mess(owner)
    member = await seed.member()
    today = datetime.now(timezone.utc).date()
    await seed.subscribe(member, mess_id, start=today, end=today + timedelta(days=3))
    await api.post(
        "/mess-qr/verify-user", json={"mess_id": str(mess_id), "target_user_id": str(member)}, headers=auth(owner)
    )

    r = await api.get("/mess-qr/stats", params={"mess_id": str(mess_id)}, headers=auth(owner))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["total_members"] == 1
    assert data["active_members"] == 1
    assert data["expiring_soon"] == 1
    assert data["recent_verifications"] == 1
    assert data["windows"]["last_24h"] == {"successful": 1, "failed": 0}

    r = await api.get("/mess-qr/stats", headers=auth(owner))
    assert r.status_code == 400
    r = await api.get("/mess-qr/stats", params={"mess_id": str(mess_id)}, headers=auth(uuid.uuid4()))
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_my_mess(api, seed) -> None:
    owner = uuid.uuid4()
    mess_id = await seed.mess(owner, name="Sunrise Mess")

    r = await api.get("/mess-qr/my-mess", headers=auth(owner))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["id"] == str(mess_id)
    assert data["name"] == "Sunrise Mess"
    assert data["qr_code"] is None

    issued = (await api.post("/mess-qr/generate", json={"mess_id": str(mess_id)}, headers=auth(owner))).json()["data"]
    data = (await api.get("/mess-qr/my-mess", headers=auth(owner))).json()["data"]
    assert data["qr_code"]["data"] == issued["data"]

    r = await api.get("/mess-qr/my-mess", headers=auth(uuid.uuid4()))
    assert r.status_code == 404
