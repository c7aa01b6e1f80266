from __future__ import annotations

import sys
import tempfile
import unittest
from pathlib import Path
from typing_extensions import override
from unittest.mock import patch

from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from afterthoughts.app.config import settings
from afterthoughts.app.main import app
from afterthoughts.app.services.client_state import ClientRegistry, ClientState
from afterthoughts.app.services.theme import PreferenceStore, theme_context
from afterthoughts.tests.fakes import FakeScheduler, FakeSupabase, FakeTimers

API = settings.api_prefix


class ApiTests(unittest.TestCase):
    backend: FakeSupabase
    registry: ClientRegistry
    http: TestClient

    @override
    def setUp(self):
        self.backend = FakeSupabase()
        self.backend.add_user("ada@example.com", "Abc12345!")
        self.scheduler = FakeScheduler()

        def factory(client_id: str) -> ClientState:
            return ClientState(
                client_id,
                client=self.backend,  # pyright: ignore[reportArgumentType]
                scheduler=self.scheduler,  # pyright: ignore[reportArgumentType]
                timers=FakeTimers(),  # pyright: ignore[reportArgumentType]
            )

        self.registry = ClientRegistry(factory=factory)
        for target in (
            "afterthoughts.app.middleware.session_gate.registry",
            "afterthoughts.app.api.deps.registry",
        ):
            patcher = patch(target, self.registry)
            patcher.start()
            self.addCleanup(patcher.stop)

        self.http = TestClient(app)

    def _login(self) -> None:
        resp = self.http.post(f"{API}/auth/login", json={"email": "ada@example.com", "password": "Abc12345!"})
        self.assertEqual(resp.status_code, 200, resp.text)

    def test_protected_route_requires_login(self):
        resp = self.http.get(f"{API}/diaries")

        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json(), {"detail": "LOGIN_REQUIRED", "redirect": "/login"})
        self.assertIn(settings.client_cookie_name, resp.cookies)

    def test_session_and_password_check_are_public(self):
        resp = self.http.get(f"{API}/auth/session")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["authenticated"], False)
        self.assertEqual(resp.json()["redirect"], "/login")

        resp = self.http.post(f"{API}/auth/password-check", json={"password": "abc", "confirm_password": "abd"})
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertFalse(data["valid"])
        self.assertFalse(data["passwords_match"])
        self.assertEqual(len(data["rules"]), 5)

    def test_login_failure_and_success(self):
        resp = self.http.post(f"{API}/auth/login", json={"email": "ada@example.com", "password": "nope"})
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["detail"], "AUTH_ERROR")

        resp = self.http.post(f"{API}/auth/login", json={"email": "ada@example.com", "password": "Abc12345!"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["redirect"], "/")
        self.assertEqual(resp.json()["user"]["first_name"], "Ada")

        self.assertEqual(self.http.get(f"{API}/diaries").status_code, 200)

    def test_invalid_signup_is_rejected_locally(self):
        resp = self.http.post(
            f"{API}/auth/signup",
            json={
                "email": "new@example.com",
                "password": "abc",
                "confirm_password": "abc",
                "first_name": "New",
                "last_name": "User",
                "agreed_to_terms": True,
            },
        )
        self.assertEqual(resp.status_code, 422)
        self.assertEqual(resp.json()["detail"], "VALIDATION_ERROR")
        self.assertEqual([c for c in self.backend.calls if c[0] == "sign_up"], [])

    def test_write_entry_flow(self):
        self._login()

        resp = self.http.post(f"{API}/diaries", json={"title": "Trip"})
        self.assertEqual(resp.status_code, 200, resp.text)
        diary_id = resp.json()["id"]

        resp = self.http.post(f"{API}/diaries/{diary_id}/select", json={})
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertEqual(resp.json()["mode"], "none")

        self.http.post(f"{API}/editor/composer/open", json={})
        resp = self.http.patch(f"{API}/editor/fields", json={"title": "Day 1", "content": "Arrived"})
        self.assertEqual(resp.json()["status"], "dirty")

        resp = self.http.post(f"{API}/editor/autosave")
        self.assertEqual(resp.json()["status"], "saved")
        self.assertIsNotNone(resp.json()["draft_id"])

        self.http.patch(f"{API}/editor/fields", json={"content": "Arrived late"})
        resp = self.http.post(f"{API}/editor/composer/close", json={})
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["detail"], "CONFIRMATION_REQUIRED")
        self.assertEqual(resp.json()["message"], "You have unsaved changes. Discard them?")

        resp = self.http.post(f"{API}/editor/publish")
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertFalse(resp.json()["is_draft"])
        self.assertEqual(resp.json()["content"], "Arrived late")

        resp = self.http.get(f"{API}/editor")
        entries = resp.json()["entries"]
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0]["preview"], "Arrived late")
        self.assertEqual(len(self.backend.rows("entries")), 1)

    def test_delete_diary_requires_confirmation(self):
        self._login()
        diary_id = self.http.post(f"{API}/diaries", json={"title": "Old"}).json()["id"]
        self.http.post(f"{API}/diaries/{diary_id}/select", json={})

        resp = self.http.delete(f"{API}/diaries/{diary_id}")
        self.assertEqual(resp.status_code, 409)

        resp = self.http.delete(f"{API}/diaries/{diary_id}", params={"confirmed": "true"})
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertEqual(resp.json()["redirect"], "/")
        self.assertEqual(self.backend.rows("diaries"), [])

    def test_blank_diary_title(self):
        self._login()
        resp = self.http.post(f"{API}/diaries", json={"title": "  "})
        self.assertEqual(resp.status_code, 422)
        self.assertEqual(resp.json()["message"], "Diary name cannot be empty")

    def test_editor_without_selection_is_404(self):
        self._login()
        resp = self.http.get(f"{API}/editor")
        self.assertEqual(resp.status_code, 404)

    def test_theme_toggle(self):
        with tempfile.TemporaryDirectory() as tmp:
            store = PreferenceStore(Path(tmp) / "prefs.json")
            with patch.object(theme_context, "store", store), patch.object(theme_context, "is_dark", False):
                resp = self.http.post(f"{API}/preferences/theme/toggle")
                self.assertEqual(resp.json(), {"theme": "dark", "is_dark": True})
                self.assertTrue(store.get("afterthoughts-dark-mode"))

                resp = self.http.put(f"{API}/preferences/theme", json={"is_dark": False})
                self.assertEqual(resp.json()["theme"], "light")

    def test_logout(self):
        self._login()
        resp = self.http.post(f"{API}/auth/logout")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["redirect"], "/login")
        self.assertEqual(self.http.get(f"{API}/diaries").status_code, 401)


if __name__ == "__main__":
    unittest.main()
