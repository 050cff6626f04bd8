"""Tests for SupabaseBackendClient against the in-memory fake client."""

from __future__ import annotations

import asyncio

import pytest

from cassava.core.config.settings import Settings
from cassava.core.errors import AuthError, ConnectivityError, RemoteBackendError, RemoteWriteError
from cassava.core.remote import client as client_module
from cassava.core.remote.client import SupabaseBackendClient, create_backend_client


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class TestUploadImage:
    def test_uploads_under_user_folder(self, backend, fake_supabase, image_file):
        url = _run(backend.upload_image(image_file, "user-1"))
        assert url.startswith("https://fake.supabase.co/storage/v1/object/public/cassava-images/user-1/")
        assert url.endswith(".jpg")
        [(key, data)] = fake_supabase.objects.items()
        assert key.startswith("cassava-images/user-1/")
        assert data.endswith(b"fake-jpeg-bytes")

    def test_unique_paths(self, backend, image_file):
        first = _run(backend.upload_image(image_file, "user-1"))
        second = _run(backend.upload_image(image_file, "user-1"))
        assert first != second

    def test_user_mismatch_rejected(self, backend, fake_supabase, image_file):
        with pytest.raises(AuthError):
            _run(backend.upload_image(image_file, "intruder"))
        assert fake_supabase.objects == {}

    def test_no_session(self, backend, fake_supabase, image_file):
        fake_supabase.auth.session = None
        with pytest.raises(AuthError, match="No authenticated session"):
            _run(backend.upload_image(image_file, "user-1"))

    def test_upload_failure_is_remote_write_error(self, backend, fake_supabase, image_file):
        fake_supabase.fail_on["upload"] = RuntimeError("bucket full")
        with pytest.raises(RemoteWriteError, match="bucket full"):
            _run(backend.upload_image(image_file, "user-1"))

    def test_transport_failure_is_connectivity_error(self, backend, fake_supabase, image_file):
        fake_supabase.offline = True
        with pytest.raises(ConnectivityError):
            _run(backend.upload_image(image_file, "user-1"))

    def test_public_url_failure_removes_blob(self, backend, fake_supabase, image_file):
        fake_supabase.fail_on["public_url"] = ValueError("storage3 changed its API")
        with pytest.raises(RemoteWriteError, match="public URL lookup"):
            _run(backend.upload_image(image_file, "user-1"))
        assert fake_supabase.objects == {}


class TestClientCreation:
    def test_invalid_url_is_remote_backend_error(self):
        backend = SupabaseBackendClient(url="not-a-url", key="anon")
        with pytest.raises(RemoteBackendError, match="Cannot create Supabase client"):
            _run(backend.get_current_user())

    def test_creation_failure_is_translated(self, monkeypatch):
        async def _broken(url, key):
            raise RuntimeError("bad JWT")

        monkeypatch.setattr(client_module, "acreate_client", _broken)
        backend = SupabaseBackendClient(url="https://x.supabase.co", key="anon")
        with pytest.raises(RemoteBackendError, match="bad JWT"):
            _run(backend.get_analyses("user-1"))


class TestRemoveImage:
    def test_removes_blob(self, backend, fake_supabase, image_file):
        url = _run(backend.upload_image(image_file, "user-1"))
        _run(backend.remove_image(url))
        assert fake_supabase.objects == {}

    def test_failure_is_swallowed(self, backend, fake_supabase, image_file):
        url = _run(backend.upload_image(image_file, "user-1"))
        fake_supabase.fail_on["remove"] = RuntimeError("nope")
        _run(backend.remove_image(url))  # does not raise
        assert len(fake_supabase.objects) == 1

    def test_foreign_url_ignored(self, backend, fake_supabase):
        _run(backend.remove_image("https://elsewhere.example/leaf.jpg"))
        assert "remove" not in fake_supabase.calls


class TestAnalyses:
    def test_save_sets_owner_from_session(self, backend, fake_supabase, record_factory):
        saved = _run(backend.save_analysis(record_factory(user_id="")))
        assert saved.id == "remote-1"
        assert saved.user_id == "user-1"
        assert saved.synced is True
        row = fake_supabase.rows()[0]
        assert row["user_id"] == "user-1"
        assert row["disease_detected"] == "Cassava Mosaic Disease"
        assert row["image_url"] == "/tmp/leaf.jpg"

    def test_save_rejects_foreign_user(self, backend, fake_supabase, record_factory):
        with pytest.raises(AuthError):
            _run(backend.save_analysis(record_factory(user_id="user-2")))
        assert fake_supabase.rows() == []

    def test_save_failure(self, backend, fake_supabase, record_factory):
        fake_supabase.fail_on["insert"] = RuntimeError("constraint violated")
        with pytest.raises(RemoteWriteError):
            _run(backend.save_analysis(record_factory()))

    def test_list_is_scoped_and_newest_first(self, backend, fake_supabase, record_factory):
        async def _check():
            await backend.save_analysis(record_factory(created_at="2026-01-01T00:00:00+00:00"))
            await backend.save_analysis(record_factory(created_at="2026-02-01T00:00:00+00:00"))
            fake_supabase.tables["cassava_analyses"].append(
                {"id": "other", "user_id": "user-2", "created_at": "2026-03-01"}
            )
            return await backend.get_analyses("user-1")
        records = _run(_check())
        assert [r.created_at[:7] for r in records] == ["2026-02", "2026-01"]

    def test_list_failure(self, backend, fake_supabase):
        fake_supabase.fail_on["select"] = RuntimeError("timeout")
        with pytest.raises(RemoteBackendError):
            _run(backend.get_analyses("user-1"))

    def test_delete_removes_row_and_blob(self, backend, fake_supabase, record_factory, image_file):
        async def _check():
            url = await backend.upload_image(image_file, "user-1")
            saved = await backend.save_analysis(record_factory(image_ref=url))
            await backend.delete_analysis(saved.id)
        _run(_check())
        assert fake_supabase.rows() == []
        assert fake_supabase.objects == {}

    def test_delete_keeps_row_when_blob_removal_fails(self, backend, fake_supabase, record_factory, image_file):
        async def _check():
            url = await backend.upload_image(image_file, "user-1")
            saved = await backend.save_analysis(record_factory(image_ref=url))
            fake_supabase.fail_on["remove"] = RuntimeError("storage down")
            await backend.delete_analysis(saved.id)
        _run(_check())
        assert fake_supabase.rows() == []

    def test_delete_other_users_row_is_noop(self, backend, fake_supabase):
        fake_supabase.tables["cassava_analyses"] = [{"id": "r-9", "user_id": "user-2"}]
        _run(backend.delete_analysis("r-9"))
        assert len(fake_supabase.rows()) == 1

    def test_delete_missing_row_is_not_an_error(self, backend):
        _run(backend.delete_analysis("does-not-exist"))


class TestAuth:
    def test_sign_up_then_sign_in(self, backend, fake_supabase):
        async def _check():
            created = await backend.sign_up("a@example.org", "pw123456")
            await backend.sign_out()
            assert await backend.get_current_user() is None
            signed_in = await backend.sign_in("a@example.org", "pw123456")
            return created, signed_in
        created, signed_in = _run(_check())
        assert created.id == signed_in.id
        assert signed_in.email == "a@example.org"

    def test_bad_credentials(self, backend):
        with pytest.raises(AuthError, match="Invalid login credentials"):
            _run(backend.sign_in("nobody@example.org", "wrong"))

    def test_current_user(self, backend):
        user = _run(backend.get_current_user())
        assert user.id == "user-1"

    def test_auth_state_listener(self, backend):
        seen = []

        async def _check():
            await backend.on_auth_state_change(seen.append)
            await backend.sign_out()
        _run(_check())
        assert seen == [None]


class TestFactory:
    def test_unconfigured_backend_raises_on_use(self):
        client = create_backend_client(Settings(supabase_url="", supabase_anon_key=""))
        with pytest.raises(RemoteBackendError, match="not configured"):
            _run(client.get_analyses("user-1"))

    def test_self_hosted_mode(self):
        settings = Settings(
            supabase_mode="self-hosted",
            supabase_self_hosted_url="http://supabase.local:8000",
            supabase_self_hosted_anon_key="local-key",
            supabase_bucket="leaves",
        )
        client = create_backend_client(settings)
        assert isinstance(client, SupabaseBackendClient)
        assert client.bucket == "leaves"
        assert settings.active_supabase() == ("http://supabase.local:8000", "local-key", "self-hosted")

    def test_self_hosted_falls_back_to_cloud_when_incomplete(self):
        settings = Settings(
            supabase_mode="self-hosted",
            supabase_url="https://x.supabase.co",
            supabase_anon_key="cloud-key",
        )
        assert settings.active_supabase() == ("https://x.supabase.co", "cloud-key", "cloud")


class TestHealthCheck:
    def test_online(self, backend):
        assert _run(backend.health_check()).status == "online"

    def test_offline(self, backend, fake_supabase):
        fake_supabase.offline = True
        assert _run(backend.health_check()).status == "offline"
