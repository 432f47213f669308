"""End-to-end HTTP tests through the FastAPI app, plus the error envelope translator."""

import unittest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from account_service.api.errors import group_request_errors, register_exception_handlers
from account_service.core.config import get_settings
from account_service.core.errors import NotFoundError, ValidationFailed
from account_service.main import app
from account_service.models.user import Role

from support import PNG_BYTES, STRONG_PASSWORD, DatabaseTestCase, create_account

API = "/api/v1"


def _registration(username: str, **overrides) -> dict:
    body = {
        "first_name": "Alice",
        "last_name": "Smith",
        "username": username,
        "email": f"{username}@example.com",
        "password": STRONG_PASSWORD,
    }
    body.update(overrides)
    return body


class ApiTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client = TestClient(app)
        self.admin_id = create_account(self.db, "admin", role=Role.ADMIN)
        self.alice_id = create_account(self.db, "alice")

    def login(self, username: str, password: str = STRONG_PASSWORD) -> dict:
        response = self.client.post(
            f"{API}/auth/login", json={"username": username, "password": password}
        )
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def auth(self, username: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.login(username)['access_token']}"}

    def assertError(self, response, status: int, code: str) -> dict:
        self.assertEqual(response.status_code, status, response.text)
        body = response.json()
        self.assertEqual(body["status"], "error")
        self.assertEqual(body["error"]["code"], code)
        self.assertIn("timestamp", body)
        self.assertNotIn("stack_trace", body["error"])
        return body


class TestRegistrationApi(ApiTestCase):
    def test_register_returns_201_without_password(self) -> None:
        response = self.client.post(f"{API}/users", json=_registration("carol"))
        self.assertEqual(response.status_code, 201, response.text)
        body = response.json()
        self.assertEqual(body["username"], "carol")
        self.assertEqual(body["role"], "USER")
        self.assertEqual(body["full_name"], "Alice Smith")
        self.assertNotIn("password", body)
        self.assertNotIn("password_hash", body)

    def test_duplicate_username(self) -> None:
        response = self.client.post(
            f"{API}/users", json=_registration("alice", email="other@example.com")
        )
        self.assertError(response, 409, "DUPLICATE_RESOURCE")

    def test_duplicate_email_differs_only_in_case(self) -> None:
        response = self.client.post(
            f"{API}/users", json=_registration("carol", email="ALICE@example.com")
        )
        self.assertError(response, 409, "DUPLICATE_RESOURCE")

    def test_field_errors_grouped(self) -> None:
        response = self.client.post(
            f"{API}/users", json=_registration("c!", password="abc")
        )
        body = self.assertError(response, 400, "VALIDATION_ERROR")
        self.assertEqual(set(body["error"]["field_errors"]), {"username", "password"})

    def test_missing_fields_grouped(self) -> None:
        response = self.client.post(f"{API}/users", json={"username": "carol"})
        body = self.assertError(response, 400, "VALIDATION_ERROR")
        self.assertIn("first_name", body["error"]["field_errors"])
        self.assertIn("password", body["error"]["field_errors"])

    def test_anonymous_cannot_register_admin(self) -> None:
        response = self.client.post(f"{API}/users", json=_registration("carol", role="ADMIN"))
        self.assertError(response, 403, "ACCESS_DENIED")

    def test_admin_registers_moderator(self) -> None:
        response = self.client.post(
            f"{API}/users",
            json=_registration("carol", role="MODERATOR"),
            headers=self.auth("admin"),
        )
        self.assertEqual(response.status_code, 201, response.text)
        self.assertEqual(response.json()["role"], "MODERATOR")

    def test_public_lookup_by_username(self) -> None:
        response = self.client.get(f"{API}/users/username/alice")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["id"], self.alice_id)
        self.assertError(self.client.get(f"{API}/users/username/nobody"), 404, "RESOURCE_NOT_FOUND")


class TestAuthApi(ApiTestCase):
    def test_login_returns_token_pair(self) -> None:
        body = self.login("alice")
        self.assertEqual(body["token_type"], "Bearer")
        self.assertEqual(body["expires_in"], get_settings().JWT_ACCESS_EXPIRE_MINUTES * 60)
        self.assertTrue(body["access_token"])
        self.assertTrue(body["refresh_token"])
        self.assertEqual(body["user"]["username"], "alice")
        self.assertIsNotNone(body["user"]["last_login_at"])

    def test_bad_credentials(self) -> None:
        response = self.client.post(
            f"{API}/auth/login", json={"username": "alice", "password": "Wrong!Pass1"}
        )
        self.assertError(response, 401, "BAD_CREDENTIALS")
        self.assertEqual(response.headers["WWW-Authenticate"], "Bearer")

    def test_lockout_after_repeated_failures(self) -> None:
        for _ in range(get_settings().LOCKOUT_THRESHOLD):
            response = self.client.post(
                f"{API}/auth/login", json={"username": "alice", "password": "Wrong!Pass1"}
            )
            self.assertError(response, 401, "BAD_CREDENTIALS")
        response = self.client.post(
            f"{API}/auth/login", json={"username": "alice", "password": STRONG_PASSWORD}
        )
        self.assertError(response, 401, "ACCOUNT_LOCKED")

    def test_missing_and_invalid_tokens(self) -> None:
        url = f"{API}/users/{self.alice_id}"
        self.assertError(self.client.get(url), 401, "AUTHENTICATION_FAILED")
        response = self.client.get(url, headers={"Authorization": "Bearer garbage"})
        self.assertError(response, 401, "INVALID_TOKEN")

    def test_refresh(self) -> None:
        tokens = self.login("alice")
        response = self.client.post(
            f"{API}/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertTrue(response.json()["access_token"])
        response = self.client.post(
            f"{API}/auth/refresh", json={"refresh_token": tokens["access_token"]}
        )
        self.assertError(response, 401, "INVALID_TOKEN")

    def test_refresh_token_not_accepted_as_bearer(self) -> None:
        tokens = self.login("alice")
        response = self.client.get(
            f"{API}/auth/me", headers={"Authorization": f"Bearer {tokens['refresh_token']}"}
        )
        self.assertError(response, 401, "INVALID_TOKEN")

    def test_me(self) -> None:
        response = self.client.get(f"{API}/auth/me", headers=self.auth("alice"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["id"], self.alice_id)

    def test_tokens_do_not_follow_username_to_new_account(self) -> None:
        old = self.login("alice")
        old_headers = {"Authorization": f"Bearer {old['access_token']}"}
        response = self.client.patch(
            f"{API}/users/{self.alice_id}", json={"username": "alice2"}, headers=old_headers
        )
        self.assertEqual(response.status_code, 200, response.text)
        response = self.client.post(
            f"{API}/users", json=_registration("alice", email="eve@example.com")
        )
        self.assertEqual(response.status_code, 201, response.text)
        eve_id = response.json()["id"]

        self.assertError(
            self.client.get(f"{API}/auth/me", headers=old_headers), 401, "AUTHENTICATION_FAILED"
        )
        self.assertError(
            self.client.get(f"{API}/users/{eve_id}", headers=old_headers),
            401,
            "AUTHENTICATION_FAILED",
        )
        response = self.client.post(
            f"{API}/auth/refresh", json={"refresh_token": old["refresh_token"]}
        )
        self.assertError(response, 401, "AUTHENTICATION_FAILED")

        me = self.client.get(f"{API}/auth/me", headers=self.auth("alice")).json()
        self.assertEqual((me["id"], me["email"]), (eve_id, "eve@example.com"))
        me = self.client.get(f"{API}/auth/me", headers=self.auth("alice2")).json()
        self.assertEqual(me["id"], self.alice_id)

    def test_rename_onto_freed_username_rejects_its_old_tokens(self) -> None:
        carol_id = create_account(self.db, "carol")
        carol_headers = self.auth("carol")
        response = self.client.delete(f"{API}/users/{carol_id}", headers=self.auth("admin"))
        self.assertEqual(response.status_code, 204)
        response = self.client.patch(
            f"{API}/users/{self.alice_id}", json={"username": "carol"}, headers=self.auth("alice")
        )
        self.assertEqual(response.status_code, 200, response.text)

        self.assertError(
            self.client.get(f"{API}/auth/me", headers=carol_headers), 401, "AUTHENTICATION_FAILED"
        )
        me = self.client.get(f"{API}/auth/me", headers=self.auth("carol")).json()
        self.assertEqual(me["id"], self.alice_id)


class TestUserAccessApi(ApiTestCase):
    def test_owner_and_admin_can_view(self) -> None:
        url = f"{API}/users/{self.alice_id}"
        self.assertEqual(self.client.get(url, headers=self.auth("alice")).status_code, 200)
        self.assertEqual(self.client.get(url, headers=self.auth("admin")).status_code, 200)

    def test_user_cannot_view_other(self) -> None:
        response = self.client.get(f"{API}/users/{self.admin_id}", headers=self.auth("alice"))
        self.assertError(response, 403, "ACCESS_DENIED")

    def test_listing_needs_staff(self) -> None:
        self.assertError(
            self.client.get(f"{API}/users", headers=self.auth("alice")), 403, "ACCESS_DENIED"
        )
        response = self.client.get(
            f"{API}/users", params={"sort": "username,asc"}, headers=self.auth("admin")
        )
        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual([u["username"] for u in body["content"]], ["admin", "alice"])
        self.assertEqual(body["metadata"]["total_elements"], 2)

    def test_moderator_can_search(self) -> None:
        create_account(self.db, "mod", role=Role.MODERATOR)
        response = self.client.get(
            f"{API}/users/search", params={"email": "ALICE"}, headers=self.auth("mod")
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual([u["id"] for u in response.json()["content"]], [self.alice_id])

    def test_invalid_query_parameter(self) -> None:
        response = self.client.get(
            f"{API}/users", params={"role": "WIZARD"}, headers=self.auth("admin")
        )
        body = self.assertError(response, 400, "VALIDATION_ERROR")
        self.assertIn("role", body["error"]["field_errors"])

    def test_stats_and_roles_admin_only(self) -> None:
        headers = self.auth("admin")
        stats = self.client.get(f"{API}/users/stats", headers=headers).json()
        self.assertEqual(stats["total_users"], 2)
        self.assertEqual(stats["role_distribution"]["ADMIN"], 1)
        roles = self.client.get(f"{API}/users/roles", headers=headers).json()
        self.assertEqual(roles, ["ADMIN", "MODERATOR", "USER", "GUEST"])
        self.assertError(
            self.client.get(f"{API}/users/stats", headers=self.auth("alice")), 403, "ACCESS_DENIED"
        )


class TestUserWritesApi(ApiTestCase):
    def test_patch_own_profile_and_stale_version(self) -> None:
        headers = self.auth("alice")
        url = f"{API}/users/{self.alice_id}"
        version = self.client.get(url, headers=headers).json()["version"]
        response = self.client.patch(url, json={"bio": "Hi", "version": version}, headers=headers)
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["bio"], "Hi")
        response = self.client.put(url, json={"bio": "Again", "version": version}, headers=headers)
        self.assertError(response, 409, "OPTIMISTIC_LOCK_FAILURE")

    def test_user_cannot_promote_self(self) -> None:
        response = self.client.patch(
            f"{API}/users/{self.alice_id}", json={"role": "ADMIN"}, headers=self.auth("alice")
        )
        self.assertError(response, 403, "ACCESS_DENIED")

    def test_change_password(self) -> None:
        headers = self.auth("alice")
        url = f"{API}/users/{self.alice_id}/change-password"
        response = self.client.post(
            url,
            json={
                "current_password": "Wrong!Pass1",
                "new_password": "N3w!Passw",
                "confirm_password": "N3w!Passw",
            },
            headers=headers,
        )
        self.assertError(response, 400, "INVALID_CURRENT_PASSWORD")
        response = self.client.post(
            url,
            json={
                "current_password": STRONG_PASSWORD,
                "new_password": "N3w!Passw",
                "confirm_password": "N3w!Passw",
            },
            headers=headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["status"], "success")
        self.login("alice", "N3w!Passw")

    def test_self_deactivation_blocks_login(self) -> None:
        headers = self.auth("alice")
        response = self.client.post(f"{API}/users/{self.alice_id}/deactivate", headers=headers)
        self.assertEqual(response.status_code, 200, response.text)
        self.assertFalse(response.json()["active"])
        response = self.client.post(
            f"{API}/auth/login", json={"username": "alice", "password": STRONG_PASSWORD}
        )
        self.assertError(response, 401, "ACCOUNT_DISABLED")
        # The token issued before deactivation still views its own account.
        response = self.client.get(f"{API}/users/{self.alice_id}", headers=headers)
        self.assertEqual(response.status_code, 200, response.text)
        self.assertFalse(response.json()["active"])
        # Reactivation is admin-only.
        response = self.client.post(f"{API}/users/{self.alice_id}/activate", headers=headers)
        self.assertError(response, 403, "ACCESS_DENIED")
        response = self.client.post(
            f"{API}/users/{self.alice_id}/activate", headers=self.auth("admin")
        )
        self.assertTrue(response.json()["active"])

    def test_account_lifecycle(self) -> None:
        response = self.client.post(f"{API}/users", json=_registration("dave"))
        self.assertEqual(response.status_code, 201, response.text)
        dave_id = response.json()["id"]
        headers = self.auth("dave")
        url = f"{API}/users/{dave_id}"

        response = self.client.patch(url, json={"bio": "Hello"}, headers=headers)
        self.assertEqual(response.json()["bio"], "Hello")

        change = {"new_password": "N3w!Passw", "confirm_password": "N3w!Passw"}
        response = self.client.post(
            f"{url}/change-password",
            json={"current_password": "Wrong!Pass1", **change},
            headers=headers,
        )
        self.assertError(response, 400, "INVALID_CURRENT_PASSWORD")
        response = self.client.post(
            f"{url}/change-password",
            json={"current_password": STRONG_PASSWORD, **change},
            headers=headers,
        )
        self.assertEqual(response.status_code, 200, response.text)

        response = self.client.post(f"{url}/deactivate", headers=headers)
        self.assertEqual(response.status_code, 200, response.text)
        response = self.client.get(url, headers=headers)
        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertFalse(body["active"])
        self.assertEqual(body["bio"], "Hello")
        response = self.client.post(
            f"{API}/auth/login", json={"username": "dave", "password": "N3w!Passw"}
        )
        self.assertError(response, 401, "ACCOUNT_DISABLED")

    def test_delete_and_bulk_delete(self) -> None:
        headers = self.auth("admin")
        carol = create_account(self.db, "carol")
        response = self.client.delete(f"{API}/users/{carol}", headers=headers)
        self.assertEqual(response.status_code, 204)
        self.assertError(
            self.client.get(f"{API}/users/{carol}", headers=headers), 404, "RESOURCE_NOT_FOUND"
        )
        dave = create_account(self.db, "dave")
        response = self.client.post(
            f"{API}/users/bulk-delete", json={"ids": [dave, 4040]}, headers=headers
        )
        self.assertEqual(response.status_code, 204)
        self.assertEqual(response.headers["X-Skipped-Ids"], "4040")

    def test_bulk_delete_needs_ids(self) -> None:
        response = self.client.post(
            f"{API}/users/bulk-delete", json={"ids": []}, headers=self.auth("admin")
        )
        self.assertError(response, 400, "VALIDATION_ERROR")

    def test_avatar_upload_and_download(self) -> None:
        response = self.client.post(
            f"{API}/users/{self.alice_id}/upload-avatar",
            files={"file": ("me.png", PNG_BYTES, "image/png")},
            headers=self.auth("alice"),
        )
        self.assertEqual(response.status_code, 200, response.text)
        avatar_url = response.json()["avatar_url"]
        self.assertTrue(avatar_url.startswith(f"{API}/files/avatars/{self.alice_id}/"))
        download = self.client.get(avatar_url)
        self.assertEqual(download.status_code, 200)
        self.assertEqual(download.content, PNG_BYTES)
        self.assertEqual(download.headers["content-type"], "image/png")

    def test_avatar_rejects_non_image(self) -> None:
        response = self.client.post(
            f"{API}/users/{self.alice_id}/upload-avatar",
            files={"file": ("notes.txt", b"hello", "text/plain")},
            headers=self.auth("alice"),
        )
        self.assertError(response, 400, "INVALID_FILE")

    def test_missing_file(self) -> None:
        self.assertError(self.client.get(f"{API}/files/avatars/1/nope.png"), 404, "RESOURCE_NOT_FOUND")

    def test_export(self) -> None:
        headers = self.auth("admin")
        response = self.client.get(f"{API}/users/export", params={"format": "CSV"}, headers=headers)
        self.assertEqual(response.status_code, 200)
        self.assertIn('filename="users.csv"', response.headers["content-disposition"])
        self.assertTrue(response.text.startswith("ID,Username,Email"))
        response = self.client.get(f"{API}/users/export", params={"format": "XML"}, headers=headers)
        self.assertError(response, 400, "UNSUPPORTED_FORMAT")


class TestRoutingErrors(ApiTestCase):
    def test_unknown_endpoint(self) -> None:
        self.assertError(self.client.get(f"{API}/nowhere"), 404, "ENDPOINT_NOT_FOUND")

    def test_method_not_allowed(self) -> None:
        self.assertError(self.client.delete(f"{API}/users"), 405, "METHOD_NOT_ALLOWED")

    def test_health(self) -> None:
        response = self.client.get(f"{API}/health/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["database"], "connected")


def _translator_app(app_env: str) -> FastAPI:
    test_app = FastAPI()
    register_exception_handlers(test_app, get_settings().model_copy(update={"APP_ENV": app_env}))

    @test_app.get("/boom")
    def boom() -> None:
        raise RuntimeError("database exploded")

    @test_app.get("/invalid")
    def invalid() -> None:
        raise ValidationFailed({"email": ["Email must be valid"]})

    @test_app.get("/missing")
    def missing() -> None:
        raise NotFoundError("User", "id", 7)

    return test_app


class TestErrorTranslator(unittest.TestCase):
    def test_unexpected_error_redacted_outside_dev(self) -> None:
        client = TestClient(_translator_app("prod"), raise_server_exceptions=False)
        body = client.get("/boom").json()
        self.assertEqual(body["message"], "An unexpected error occurred")
        self.assertEqual(body["error"], {"code": "INTERNAL_SERVER_ERROR"})

    def test_dev_echoes_message_and_stack_trace(self) -> None:
        client = TestClient(_translator_app("dev"), raise_server_exceptions=False)
        response = client.get("/boom")
        self.assertEqual(response.status_code, 500)
        body = response.json()
        self.assertEqual(body["message"], "database exploded")
        self.assertIn("RuntimeError", body["error"]["stack_trace"])

    def test_service_errors_keep_status_and_code(self) -> None:
        client = TestClient(_translator_app("test"))
        response = client.get("/invalid")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json()["error"],
            {"code": "VALIDATION_ERROR", "field_errors": {"email": ["Email must be valid"]}},
        )
        response = client.get("/missing")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["message"], "User not found with id: '7'")

    def test_group_request_errors_strips_location(self) -> None:
        grouped = group_request_errors(
            [
                {"loc": ("body", "email"), "msg": "Field required"},
                {"loc": ("query", "page"), "msg": "too small"},
                {"loc": ("body", "email"), "msg": "second"},
                {"loc": ("body",), "msg": "Invalid JSON"},
            ]
        )
        self.assertEqual(
            grouped,
            {"email": ["Field required", "second"], "page": ["too small"], "general": ["Invalid JSON"]},
        )


if __name__ == "__main__":
    unittest.main()
