"""Integration tests for the admin and webhook endpoints over the real database."""

import pytest

from tests.factories import make_episode_payload, make_media_info

pytestmark = pytest.mark.integration


class TestAdjudicationApi:
    @pytest.mark.asyncio
    async def test_pending_then_archive(self, app_client, ledger, fake_transport):
        request = await ledger.submit("TMDB/TV", "12345", 1001, make_media_info())

        pending = (await app_client.get("/admin/requests/pending")).json()
        assert [item["id"] for item in pending] == [request.id]
        assert pending[0]["status_name"] == "submitted"

        resp = await app_client.post(
            "/admin/requests/status",
            json={"request_id": request.id, "new_status": "archived"},
        )
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        assert (await app_client.get("/admin/requests/pending")).json() == []
        archived = (await app_client.get("/admin/requests/archived")).json()
        assert archived[0]["title"] == "示例剧集"
        assert fake_transport.texts(1001) == ["您请求的《示例剧集》状态已更新：已入库"]

    @pytest.mark.asyncio
    async def test_second_adjudication_conflicts(self, app_client, ledger, fake_transport):
        request = await ledger.submit("BGM.TV", "1", 1001)

        first = await app_client.post(
            "/admin/requests/status", json={"request_id": request.id, "new_status": 2}
        )
        second = await app_client.post(
            "/admin/requests/status", json={"request_id": request.id, "new_status": 1}
        )

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["success"] is False
        assert len(fake_transport.texts(1001)) == 1

    @pytest.mark.asyncio
    async def test_unknown_request(self, app_client):
        resp = await app_client.post(
            "/admin/requests/status", json={"request_id": 404, "new_status": "invalid"}
        )

        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_fetch_metadata(self, app_client, ledger, mock_catalog):
        await ledger.submit("TMDB/Movie", "550", 1001)
        mock_catalog.fetch.return_value = make_media_info(title="Fight Club")

        resp = await app_client.post("/admin/requests/fetch-metadata")

        assert resp.status_code == 200
        assert resp.json() == {"total_processed": 1, "successful": 1, "failed": 0, "errors": []}
        pending = (await app_client.get("/admin/requests/pending")).json()
        assert pending[0]["title"] == "Fight Club"


class TestRegistrationApi:
    @pytest.mark.asyncio
    async def test_registration_lookup(self, app_client, directory):
        await directory.register(1001, "bob", "42")

        found = (await app_client.get("/admin/registrations/1001")).json()
        missing = (await app_client.get("/admin/registrations/2002")).json()

        assert found == {"registered": True, "database_username": "bob", "admin": False}
        assert missing["registered"] is False

    @pytest.mark.asyncio
    async def test_requires_token(self, app_client):
        resp = await app_client.get(
            "/admin/registrations/1001", headers={"Authorization": "Bearer wrong"}
        )

        assert resp.status_code == 403


class TestWebhookApi:
    @pytest.mark.asyncio
    async def test_series_announced_once(self, app_client, fake_transport):
        responses = [
            await app_client.post("/webhook", json=make_episode_payload(IndexNumber=i))
            for i in (1, 2, 3)
        ]

        assert [r.json()["dispatched"] for r in responses] == [True, False, False]
        assert fake_transport.texts(-100) == [
            "新剧集入库: 示例剧集 (2024)\n第 1 季 - 第1集 - 第一集"
        ]

    @pytest.mark.asyncio
    async def test_other_series_announced(self, app_client, fake_transport):
        await app_client.post("/webhook", json=make_episode_payload(series_id="S1"))
        await app_client.post(
            "/webhook", json=make_episode_payload(series_id="S2", SeriesName="另一部")
        )

        assert len(fake_transport.texts(-100)) == 2
