"""Test the HTTP API."""
import uuid
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient

from repokit.models import User
from repokit.repositories.base import BaseRepository
from tests.factories import user_payload


@pytest.fixture
def users() -> BaseRepository[User]:
    """User repository on the application defaults installed by the fixtures."""
    return BaseRepository(User)


class TestHealth:
    """Test the health check endpoint."""

    async def test_health_check(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "repokit-api"
        assert data["version"] == "0.1.0"
        assert data["timestamp"].endswith("Z")
        assert data["checks"]["database"]["status"] == "healthy"
        assert data["checks"]["cache"]["status"] == "healthy"
        assert data["checks"]["cache"]["backend"] == "memory"
        assert isinstance(data["checks"]["database"]["response_time_ms"], (int, float))

    async def test_health_check_database_unhealthy_returns_degraded(self, async_client: AsyncClient) -> None:
        """Test a failing database check turns the response into 503 degraded."""
        with patch("repokit.main.check_database_connection", AsyncMock(return_value=False)):
            response = await async_client.get("/health")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data["checks"]["database"]["status"] == "unhealthy"
        assert data["checks"]["cache"]["status"] == "healthy"

    async def test_health_check_cache_unhealthy_returns_degraded(self, async_client: AsyncClient) -> None:
        with patch("repokit.main.check_cache_connection", AsyncMock(return_value=False)):
            response = await async_client.get("/health")

        assert response.status_code == 503
        assert response.json()["checks"]["cache"]["status"] == "unhealthy"

    async def test_response_carries_request_context_headers(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/health", headers={"X-Request-ID": "abc"})

        assert response.headers["x-request-id"] == "abc"
        assert response.headers["content-language"] == "en"


class TestListUsers:
    """Test GET /users."""

    async def test_empty_page(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/users")

        assert response.status_code == 200
        body = response.json()
        assert body["data"] == []
        assert body["meta"]["total"] == 0
        assert body["meta"]["last_page"] == 1
        assert body["meta"]["first_page_url"] == "/users?page=1"

    async def test_paginates_and_sorts(self, async_client: AsyncClient, users: BaseRepository[User]) -> None:
        """Test page, per_page and sorting query parameters."""
        await users.create_many([user_payload(age=age) for age in (40, 10, 30, 20, 50)])

        response = await async_client.get(
            "/users", params={"page": 1, "per_page": 2, "sort_by": "age", "direction": "desc"}
        )

        assert response.status_code == 200
        body = response.json()
        assert [user["age"] for user in body["data"]] == [50, 40]
        assert body["meta"]["total"] == 5
        assert body["meta"]["last_page"] == 3
        assert body["meta"]["next_page_url"] == "/users?page=2"
        assert body["meta"]["previous_page_url"] is None
        assert "password_hash" not in body["data"][0]
        assert body["data"][0]["roles"] == []

    async def test_search(self, async_client: AsyncClient, users: BaseRepository[User]) -> None:
        await users.create(user_payload(full_name="Margaret Hamilton"))
        await users.create(user_payload(full_name="Frances Allen"))

        response = await async_client.get("/users", params={"search": "Hamilton"})

        body = response.json()
        assert body["meta"]["total"] == 1
        assert body["data"][0]["full_name"] == "Margaret Hamilton"

    async def test_invalid_sort_key_returns_422(self, async_client: AsyncClient) -> None:
        """Test repository validation errors become 422 with the allowed keys."""
        response = await async_client.get("/users", params={"sort_by": "password"})

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["message"].startswith("Invalid sort key: password")
        assert "fullName" in body["details"]["allowed"]

    async def test_invalid_sort_key_message_is_localized(self, async_client: AsyncClient) -> None:
        response = await async_client.get(
            "/users", params={"sort_by": "password"}, headers={"Accept-Language": "pt-BR"}
        )

        assert response.status_code == 422
        assert response.json()["message"].startswith("Chave de ordenação inválida: password")
        assert response.headers["content-language"] == "pt-BR"

    async def test_invalid_direction_returns_422(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/users", params={"sort_by": "age", "direction": "up"})

        assert response.status_code == 422
        assert response.json()["details"]["allowed"] == ["asc", "desc"]

    async def test_negative_page_returns_422(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/users", params={"page": -1})

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    async def test_per_page_limit(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/users", params={"per_page": 500})
        assert response.status_code == 422


class TestGetUser:
    """Test GET /users/{user_id}."""

    async def test_returns_user(self, async_client: AsyncClient, users: BaseRepository[User]) -> None:
        user = await users.create(user_payload(email="show@example.com"))

        response = await async_client.get(f"/users/{user.id}")

        assert response.status_code == 200
        assert response.json()["email"] == "show@example.com"
        assert response.json()["id"] == str(user.id)

    async def test_soft_deleted_user_is_not_found(
        self, async_client: AsyncClient, users: BaseRepository[User]
    ) -> None:
        user = await users.create(user_payload(email="hidden@example.com"))
        await users.soft_delete("id", user.id)

        response = await async_client.get(f"/users/{user.id}")

        assert response.status_code == 404

    async def test_unknown_user_returns_404(self, async_client: AsyncClient) -> None:
        user_id = uuid.uuid4()

        response = await async_client.get(f"/users/{user_id}")

        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "not_found"
        assert body["message"] == f"User with id {user_id} not found"


class TestCreatePermission:
    """Test POST /permissions."""

    async def test_creates_then_updates(self, async_client: AsyncClient) -> None:
        """Test posting the same resource/action twice updates the one permission."""
        first = await async_client.post("/permissions", json={"resource": "users", "action": "read"})
        second = await async_client.post(
            "/permissions",
            json={"resource": "users", "action": "read", "name": "Read users", "description": "View profiles"},
        )

        assert first.status_code == 201
        assert first.json()["name"] == "users.read"
        assert second.status_code == 201
        assert second.json()["id"] == first.json()["id"]
        assert second.json()["name"] == "Read users"
        assert second.json()["description"] == "View profiles"

    async def test_rejects_unknown_resource(self, async_client: AsyncClient) -> None:
        response = await async_client.post("/permissions", json={"resource": "planets", "action": "read"})
        assert response.status_code == 422
