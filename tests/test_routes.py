"""
Tests for the entitlement and download API routes.

Routes run against the in-memory world through dependency overrides.
"""

from uuid import uuid4

import pytest

from entitlements.api.dependencies import get_api_key
from entitlements.exceptions import ResourceNotFoundError


class TestEntitlementChecks:
    """Decision endpoints answer 200 for both grants and denials."""

    def test_attachment_allowed(self, client, world):
        """A tier-qualified user gets allowed=true."""
        user = world.add_user(level=2)
        attachment_id = world.add_attachment(minimum_level=1)

        response = client.post(
            "/v1/entitlements/attachments/check",
            json={"user_id": str(user), "attachment_id": str(attachment_id)},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["allowed"] is True
        assert data["reason"] == "tier"

    def test_attachment_denied_is_200(self, client, world):
        """A denial is a normal answer, not an error status."""
        user = world.add_user(level=0)
        attachment_id = world.add_attachment(minimum_level=2)

        response = client.post(
            "/v1/entitlements/attachments/check",
            json={"user_id": str(user), "attachment_id": str(attachment_id)},
        )

        assert response.status_code == 200
        assert response.json()["allowed"] is False
        assert response.json()["reason"] == "insufficient_tier"

    def test_anonymous_caller(self, client, world):
        """Omitting user_id is an unauthenticated denial."""
        attachment_id = world.add_attachment(minimum_level=0)

        response = client.post(
            "/v1/entitlements/attachments/check",
            json={"attachment_id": str(attachment_id)},
        )

        assert response.json()["reason"] == "unauthenticated"
        assert response.json()["message"] == "not authenticated"

    def test_course_check(self, client, world):
        """Course gate by tier."""
        user = world.add_user(level=1)
        course_id = world.add_course(minimum_level=1)

        response = client.post(
            "/v1/entitlements/courses/check",
            json={"user_id": str(user), "course_id": str(course_id)},
        )

        assert response.json()["allowed"] is True

    def test_lesson_check_unknown_lesson(self, client, world):
        """A lesson outside any course is not found."""
        user = world.add_user(level=3)

        response = client.post(
            "/v1/entitlements/lessons/check",
            json={"user_id": str(user), "lesson_id": str(uuid4())},
        )

        assert response.json()["reason"] == "not_found"

    def test_storefront_ignores_tier(self, client, world):
        """A top-tier user without a purchase has no storefront access."""
        user = world.add_user(level=5)
        attachment_id = world.add_attachment(minimum_level=0, shop_only=True)

        response = client.post(
            "/v1/entitlements/storefront/check",
            json={"user_id": str(user), "attachment_id": str(attachment_id)},
        )

        assert response.json()["allowed"] is False
        assert response.json()["reason"] == "no_access"

    def test_invalid_uuid_rejected(self, client):
        """Malformed ids fail validation."""
        response = client.post(
            "/v1/entitlements/attachments/check",
            json={"attachment_id": "not-a-uuid"},
        )

        assert response.status_code == 422

    def test_store_unavailable_is_503(self, client, world):
        """Infrastructure failure is a 503, never a denial."""
        world.identity.unavailable = True

        response = client.post(
            "/v1/entitlements/attachments/check",
            json={"user_id": str(uuid4()), "attachment_id": str(uuid4())},
        )

        assert response.status_code == 503
        assert response.json()["detail"] == "Entitlement store unavailable"


class TestDownloads:
    """Quota check and record endpoints."""

    def test_check_reports_remaining(self, client, world):
        """The advisory check includes quota numbers."""
        user = world.add_user(level=0, download_limit=5)
        attachment_id = world.add_attachment(minimum_level=0)
        world.add_downloads(user, 2)

        response = client.post(
            "/v1/downloads/check",
            json={"user_id": str(user), "attachment_id": str(attachment_id)},
        )

        data = response.json()
        assert response.status_code == 200
        assert data["allowed"] is True
        assert data["downloads_this_month"] == 2
        assert data["downloads_remaining"] == 3

    def test_record_created(self, client, world):
        """An allowed download is recorded with 201."""
        user = world.add_user(level=0, download_limit=5)
        attachment_id = world.add_attachment(minimum_level=0)

        response = client.post(
            "/v1/downloads/record",
            json={"user_id": str(user), "attachment_id": str(attachment_id)},
        )

        assert response.status_code == 201
        assert response.json()["attachment_id"] == str(attachment_id)
        assert len(world.ledger.downloads) == 1

    def test_record_quota_exceeded_is_403(self, client, world):
        """At the limit the record endpoint refuses with the decision body."""
        user = world.add_user(level=0, download_limit=5)
        attachment_id = world.add_attachment(minimum_level=0)
        world.add_downloads(user, 5)

        response = client.post(
            "/v1/downloads/record",
            json={"user_id": str(user), "attachment_id": str(attachment_id)},
        )

        assert response.status_code == 403
        detail = response.json()["detail"]
        assert detail["reason"] == "quota_exceeded"
        assert "5" in detail["message"]
        assert len(world.ledger.downloads) == 5

    def test_record_anonymous_is_401(self, client, world):
        """Anonymous record attempts are 401."""
        attachment_id = world.add_attachment(minimum_level=0)

        response = client.post(
            "/v1/downloads/record",
            json={"attachment_id": str(attachment_id)},
        )

        assert response.status_code == 401
        assert response.json()["detail"]["message"] == "not authenticated"

    def test_record_missing_attachment_is_404(self, client, world):
        """An admin recording a nonexistent attachment gets 404, not 503."""
        admin = world.add_user(level=0, is_admin=True, download_limit=5)

        response = client.post(
            "/v1/downloads/record",
            json={"user_id": str(admin), "attachment_id": str(uuid4())},
        )

        assert response.status_code == 404
        assert response.json()["detail"]["reason"] == "not_found"
        assert world.ledger.downloads == []

    def test_record_attachment_deleted_mid_request_is_404(self, client, world):
        """A ledger foreign key rejection surfaces as 404."""
        user = world.add_user(level=0, download_limit=5)
        attachment_id = world.add_attachment(minimum_level=0)

        async def reject(*args, **kwargs):
            raise ResourceNotFoundError(f"Attachment {attachment_id} not found")

        world.ledger.record_download = reject

        response = client.post(
            "/v1/downloads/record",
            json={"user_id": str(user), "attachment_id": str(attachment_id)},
        )

        assert response.status_code == 404
        assert str(attachment_id) in response.json()["detail"]
        assert world.ledger.rolled_back == 1

    def test_record_requires_write_permission(self, client, app, world, api_key_read):
        """A read-only key cannot record downloads."""
        app.dependency_overrides[get_api_key] = lambda: api_key_read
        user = world.add_user(level=0, download_limit=5)
        attachment_id = world.add_attachment(minimum_level=0)

        response = client.post(
            "/v1/downloads/record",
            json={"user_id": str(user), "attachment_id": str(attachment_id)},
        )

        assert response.status_code == 403
        assert "downloads:write" in response.json()["detail"]
        assert world.ledger.downloads == []


class TestLookups:
    """Tier list, permission level and attachment tier."""

    def test_list_tiers(self, client, world):
        """Tiers come back ordered by level."""
        world.add_tier("Premium", permission_level=2)
        world.add_tier("Free", permission_level=0, download_limit=5)

        response = client.get("/v1/tiers")

        names = [tier["name"] for tier in response.json()["tiers"]]
        assert names == ["Free", "Premium"]

    def test_permission_level(self, client, world):
        """Known users report their level."""
        user = world.add_user(level=2, download_limit=20)

        response = client.get(f"/v1/users/{user}/permission-level")

        assert response.status_code == 200
        assert response.json()["permission_level"] == 2

    def test_permission_level_unknown_user(self, client):
        """Unknown users are 404."""
        response = client.get(f"/v1/users/{uuid4()}/permission-level")

        assert response.status_code == 404

    def test_purchased_attachments(self, client, world):
        """Owned attachments are listed in a stable order."""
        user = world.add_user(level=0)
        single = world.add_attachment(minimum_level=0)
        bundled = world.add_attachment(minimum_level=0)
        world.buy_file(user, single)
        world.buy_bundle(user, bundled)

        response = client.get(f"/v1/users/{user}/purchased-attachments")

        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == str(user)
        assert data["attachment_ids"] == sorted([str(single), str(bundled)])

    def test_purchased_attachments_unknown_user(self, client):
        """Unknown users are 404."""
        response = client.get(f"/v1/users/{uuid4()}/purchased-attachments")

        assert response.status_code == 404

    def test_purchased_attachments_store_unavailable(self, client, world):
        """An unreachable identity store is 503."""
        user = world.add_user(level=0)
        world.identity.unavailable = True

        response = client.get(f"/v1/users/{user}/purchased-attachments")

        assert response.status_code == 503

    def test_attachment_tier_for_entitled_user(self, client, world):
        """Users with access see the attachment's tier."""
        user = world.add_user(level=2)
        attachment_id = world.add_attachment(minimum_level=1, tier_name="Basic")

        response = client.get(
            f"/v1/attachments/{attachment_id}/tier", params={"user_id": str(user)}
        )

        assert response.status_code == 200
        assert response.json()["tier_name"] == "Basic"

    @pytest.mark.parametrize(
        "level,known,expected",
        [(0, True, 403), (3, False, 404)],
    )
    def test_attachment_tier_hidden(self, client, world, level, known, expected):
        """The tier is not disclosed to users without access."""
        user = world.add_user(level=level)
        attachment_id = world.add_attachment(minimum_level=2) if known else uuid4()

        response = client.get(
            f"/v1/attachments/{attachment_id}/tier", params={"user_id": str(user)}
        )

        assert response.status_code == expected

    def test_attachment_tier_anonymous(self, client, world):
        """Anonymous callers are 401."""
        attachment_id = world.add_attachment(minimum_level=0)

        response = client.get(f"/v1/attachments/{attachment_id}/tier")

        assert response.status_code == 401
