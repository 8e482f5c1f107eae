"""Report submission, visibility and status changes over HTTP."""

from __future__ import annotations

import base64

from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wastewatch.db.models import Notification

IMAGE = "data:image/jpeg;base64," + base64.b64encode(b"jpeg-bytes").decode()


def _report(**overrides: object) -> dict[str, object]:
    body: dict[str, object] = {
        "title": "Overflowing bin",
        "description": "The bin at the junction has not been emptied in a week.",
        "location": "Ogui Road junction",
        "category": "overflow",
        "images": [IMAGE],
    }
    body.update(overrides)
    return body


async def _submit(client: AsyncClient, headers: dict[str, str], **overrides: object) -> dict:
    response = await client.post("/api/v1/reports", json=_report(**overrides), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestSubmission:
    async def test_resident_submits_report(self, client: AsyncClient, make_profile, auth_headers):
        resident = await make_profile(name="Ngozi", area="Abakpa")
        data = await _submit(client, auth_headers(resident))

        assert data["status"] == "pending"
        assert data["user_id"] == resident.id
        assert data["user_name"] == "Ngozi"
        assert data["user_area"] == "Abakpa"
        assert data["waste_type"] == "overflow"
        assert data["images"] == [IMAGE]

    async def test_visible_only_to_owner_and_staff(self, client: AsyncClient, make_profile, auth_headers):
        owner = await make_profile()
        neighbour = await make_profile()
        official = await make_profile(role="official")
        report = await _submit(client, auth_headers(owner))

        own = (await client.get("/api/v1/reports", headers=auth_headers(owner))).json()
        assert [r["id"] for r in own["reports"]] == [report["id"]]

        other = (await client.get("/api/v1/reports", headers=auth_headers(neighbour))).json()
        assert other["reports"] == []
        assert other["total"] == 0

        staff = (await client.get("/api/v1/reports", headers=auth_headers(official))).json()
        assert staff["total"] == 1

        hidden = await client.get(f"/api/v1/reports/{report['id']}", headers=auth_headers(neighbour))
        assert hidden.status_code == 404

    async def test_submission_broadcasts_notification(
        self, client: AsyncClient, make_profile, auth_headers, db_session: AsyncSession
    ):
        resident = await make_profile()
        report = await _submit(client, auth_headers(resident))

        notification = (await db_session.execute(select(Notification))).scalar_one()
        assert notification.title == "New Waste Report"
        assert notification.for_all is True
        assert notification.type == "report"
        assert notification.notification_metadata == {"report_id": report["id"]}

    async def test_coordinates_taken_from_location(self, client: AsyncClient, make_profile, auth_headers):
        resident = await make_profile()
        data = await _submit(client, auth_headers(resident), location="6.4584, 7.5464")
        assert data["latitude"] == 6.4584
        assert data["longitude"] == 7.5464

    async def test_too_many_images(self, client: AsyncClient, make_profile, auth_headers):
        resident = await make_profile()
        response = await client.post(
            "/api/v1/reports", json=_report(images=[IMAGE] * 5), headers=auth_headers(resident)
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "You can upload at most 4 images"

    async def test_blank_title(self, client: AsyncClient, make_profile, auth_headers):
        resident = await make_profile()
        response = await client.post("/api/v1/reports", json=_report(title="   "), headers=auth_headers(resident))
        assert response.status_code == 400

    async def test_requires_authentication(self, client: AsyncClient):
        response = await client.post("/api/v1/reports", json=_report())
        assert response.status_code == 401


class TestStatusChanges:
    async def test_official_moves_report_to_in_progress(
        self, client: AsyncClient, make_profile, auth_headers, db_session: AsyncSession
    ):
        owner = await make_profile()
        official = await make_profile(role="official")
        target = await _submit(client, auth_headers(owner), title="Target")
        untouched = await _submit(client, auth_headers(owner), title="Untouched")

        response = await client.patch(
            f"/api/v1/reports/{target['id']}/status",
            json={"status": "in-progress"},
            headers=auth_headers(official),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "in-progress"

        seen = await client.get(f"/api/v1/reports/{target['id']}", headers=auth_headers(owner))
        assert seen.json()["status"] == "in-progress"
        assert seen.json()["updated_at"] != target["updated_at"]

        other = await client.get(f"/api/v1/reports/{untouched['id']}", headers=auth_headers(owner))
        assert other.json()["status"] == "pending"
        assert other.json()["updated_at"] == untouched["updated_at"]

        personal = (
            await db_session.execute(select(Notification).where(Notification.for_user_id == owner.id))
        ).scalar_one()
        assert personal.title == "Report Status Updated"
        assert personal.message == 'Your report "Target" is now In Progress.'

    async def test_free_transitions(self, client: AsyncClient, make_profile, auth_headers):
        owner = await make_profile()
        admin = await make_profile(role="admin")
        report = await _submit(client, auth_headers(owner))
        url = f"/api/v1/reports/{report['id']}/status"

        for status in ("resolved", "pending", "in-progress"):
            response = await client.patch(url, json={"status": status}, headers=auth_headers(admin))
            assert response.json()["status"] == status

    async def test_completed_is_resolved(self, client: AsyncClient, make_profile, auth_headers):
        owner = await make_profile()
        official = await make_profile(role="official")
        report = await _submit(client, auth_headers(owner))
        response = await client.patch(
            f"/api/v1/reports/{report['id']}/status", json={"status": "completed"}, headers=auth_headers(official)
        )
        assert response.json()["status"] == "resolved"

    async def test_unchanged_status_sends_no_notification(
        self, client: AsyncClient, make_profile, auth_headers, db_session: AsyncSession
    ):
        owner = await make_profile()
        official = await make_profile(role="official")
        report = await _submit(client, auth_headers(owner))
        await client.patch(
            f"/api/v1/reports/{report['id']}/status", json={"status": "pending"}, headers=auth_headers(official)
        )
        personal = await db_session.execute(select(Notification).where(Notification.for_user_id == owner.id))
        assert personal.first() is None

    async def test_unknown_status(self, client: AsyncClient, make_profile, auth_headers):
        owner = await make_profile()
        official = await make_profile(role="official")
        report = await _submit(client, auth_headers(owner))
        response = await client.patch(
            f"/api/v1/reports/{report['id']}/status", json={"status": "archived"}, headers=auth_headers(official)
        )
        assert response.status_code == 422

    async def test_resident_cannot_change_status(self, client: AsyncClient, make_profile, auth_headers):
        owner = await make_profile()
        report = await _submit(client, auth_headers(owner))
        response = await client.patch(
            f"/api/v1/reports/{report['id']}/status", json={"status": "resolved"}, headers=auth_headers(owner)
        )
        assert response.status_code == 403

    async def test_missing_report(self, client: AsyncClient, make_profile, auth_headers):
        official = await make_profile(role="official")
        response = await client.patch(
            "/api/v1/reports/does-not-exist/status", json={"status": "resolved"}, headers=auth_headers(official)
        )
        assert response.status_code == 404


class TestDeletion:
    async def test_staff_delete(self, client: AsyncClient, make_profile, auth_headers):
        owner = await make_profile()
        official = await make_profile(role="official")
        report = await _submit(client, auth_headers(owner))

        response = await client.delete(f"/api/v1/reports/{report['id']}", headers=auth_headers(official))
        assert response.json() == {"detail": "Report deleted"}
        gone = await client.get(f"/api/v1/reports/{report['id']}", headers=auth_headers(official))
        assert gone.status_code == 404

    async def test_resident_cannot_delete(self, client: AsyncClient, make_profile, auth_headers):
        owner = await make_profile()
        report = await _submit(client, auth_headers(owner))
        response = await client.delete(f"/api/v1/reports/{report['id']}", headers=auth_headers(owner))
        assert response.status_code == 403


class TestFiltering:
    async def test_status_and_search(self, client: AsyncClient, make_profile, auth_headers):
        owner = await make_profile()
        official = await make_profile(role="official")
        headers = auth_headers(official)
        bin_report = await _submit(client, auth_headers(owner), title="Overflowing bin")
        await _submit(client, auth_headers(owner), title="Illegal dumping", category="dumping")
        await client.patch(f"/api/v1/reports/{bin_report['id']}/status", json={"status": "resolved"}, headers=headers)

        resolved = (await client.get("/api/v1/reports", params={"status": "resolved"}, headers=headers)).json()
        assert [r["id"] for r in resolved["reports"]] == [bin_report["id"]]

        dumping = (await client.get("/api/v1/reports", params={"search": "DUMPING"}, headers=headers)).json()
        assert [r["title"] for r in dumping["reports"]] == ["Illegal dumping"]

    async def test_completed_filter_lists_resolved(self, client: AsyncClient, make_profile, auth_headers):
        owner = await make_profile()
        official = await make_profile(role="official")
        headers = auth_headers(official)
        done = await _submit(client, auth_headers(owner), title="Cleared heap")
        await _submit(client, auth_headers(owner), title="Still waiting")
        await client.patch(f"/api/v1/reports/{done['id']}/status", json={"status": "completed"}, headers=headers)

        response = await client.get("/api/v1/reports", params={"status": "completed"}, headers=headers)
        assert response.status_code == 200
        data = response.json()
        assert [r["id"] for r in data["reports"]] == [done["id"]]
        assert data["reports"][0]["status"] == "resolved"

    async def test_invalid_status_filter(self, client: AsyncClient, make_profile, auth_headers):
        official = await make_profile(role="official")
        response = await client.get("/api/v1/reports", params={"status": "lost"}, headers=auth_headers(official))
        assert response.status_code == 400

    async def test_pagination(self, client: AsyncClient, make_profile, auth_headers):
        owner = await make_profile()
        for i in range(3):
            await _submit(client, auth_headers(owner), title=f"Report {i}")
        page = (await client.get("/api/v1/reports", params={"per_page": 2, "page": 2}, headers=auth_headers(owner))).json()
        assert page["total"] == 3
        assert len(page["reports"]) == 1
