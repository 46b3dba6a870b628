"""Tests for src.core.sync — the user sync reconciler."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from conftest import make_user
from src.core.sync import SyncReconciler
from src.data.db import StorageError
from src.integrations.sync_api import SyncApiClient
from src.ports.sync_port import SyncError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _two_users(user_db):
    good = user_db.upsert_user(make_user(user_name="good", email="good@example.com"))
    bad = user_db.upsert_user(make_user(user_name="bad", email="bad@example.com"))
    return good, bad


def _uploader(failing: set[str], permanent: bool = False):
    async def upload(user):
        if user.user_name in failing:
            raise SyncError("boom", permanent=permanent)
        return f"cloud-{user.user_name}"

    uploader = AsyncMock()
    uploader.upload_user = AsyncMock(side_effect=upload)
    return uploader


class FakeConnectivity:
    def __init__(self):
        self.callbacks = []

    def subscribe(self, callback):
        self.callbacks.append(callback)
        return lambda: self.callbacks.remove(callback)

    async def emit(self, connected: bool):
        for callback in list(self.callbacks):
            await callback(connected)


# ---------------------------------------------------------------------------
# run_pass
# ---------------------------------------------------------------------------


class TestRunPass:
    @pytest.mark.asyncio
    async def test_one_success_one_failure(self, user_db):
        good, bad = _two_users(user_db)
        reconciler = SyncReconciler(user_db, _uploader({"bad"}))

        report = await reconciler.run_pass()

        assert report.synced == [good.id]
        assert report.failed == [bad.id]
        assert user_db.get_user(good.id).synced is True
        assert user_db.get_user(good.id).cloud_id == "cloud-good"
        assert user_db.get_user(bad.id).synced is False
        assert user_db.get_user(bad.id).sync_attempts == 1

    @pytest.mark.asyncio
    async def test_nothing_to_sync(self, user_db):
        uploader = _uploader(set())
        report = await SyncReconciler(user_db, uploader).run_pass()
        assert report.synced == []
        uploader.upload_user.assert_not_called()

    @pytest.mark.asyncio
    async def test_synced_users_are_not_uploaded_again(self, user_db):
        _two_users(user_db)
        uploader = _uploader(set())
        reconciler = SyncReconciler(user_db, uploader)

        await reconciler.run_pass()
        await reconciler.run_pass()

        assert uploader.upload_user.await_count == 2

    @pytest.mark.asyncio
    async def test_permanent_rejection_is_not_retried(self, user_db):
        _, bad = _two_users(user_db)
        uploader = _uploader({"bad"}, permanent=True)
        reconciler = SyncReconciler(user_db, uploader)

        first = await reconciler.run_pass()
        second = await reconciler.run_pass()

        assert first.rejected == [bad.id]
        assert second.rejected == []
        stored = user_db.get_user(bad.id)
        assert stored.sync_failed is True
        assert stored.sync_error == "boom"
        assert uploader.upload_user.await_count == 2

    @pytest.mark.asyncio
    async def test_attempt_cap_stops_transient_retries(self, user_db):
        _, bad = _two_users(user_db)
        uploader = _uploader({"bad"})
        reconciler = SyncReconciler(user_db, uploader, max_attempts=2)

        await reconciler.run_pass()
        await reconciler.run_pass()
        third = await reconciler.run_pass()

        assert third.failed == []
        assert user_db.get_user(bad.id).sync_attempts == 2

    @pytest.mark.asyncio
    async def test_unexpected_uploader_error_is_absorbed(self, user_db):
        user = user_db.upsert_user(make_user())
        uploader = AsyncMock()
        uploader.upload_user = AsyncMock(side_effect=RuntimeError("bug"))

        report = await SyncReconciler(user_db, uploader).run_pass()

        assert report.failed == [user.id]
        assert user_db.get_user(user.id).synced is False

    @pytest.mark.asyncio
    async def test_mark_synced_failure_leaves_row_unsynced(self):
        user_db = MagicMock()
        user_db.list_unsynced.return_value = [make_user(id=1)]
        user_db.mark_synced.side_effect = StorageError("mark_synced", "disk full")

        report = await SyncReconciler(user_db, _uploader(set())).run_pass()

        assert report.synced == []
        assert report.failed == [1]

    @pytest.mark.asyncio
    async def test_concurrent_run_pass_is_skipped(self, user_db):
        user_db.upsert_user(make_user())
        release = asyncio.Event()

        async def slow_upload(user):
            await release.wait()
            return "cloud-1"

        uploader = AsyncMock()
        uploader.upload_user = AsyncMock(side_effect=slow_upload)
        reconciler = SyncReconciler(user_db, uploader)

        first = asyncio.create_task(reconciler.run_pass())
        await asyncio.sleep(0)
        assert await reconciler.run_pass() is None

        release.set()
        report = await first
        assert len(report.synced) == 1
        uploader.upload_user.assert_awaited_once()


# ---------------------------------------------------------------------------
# Connectivity-driven passes
# ---------------------------------------------------------------------------


class TestConnectivity:
    @pytest.mark.asyncio
    async def test_reconnect_triggers_pass(self, user_db):
        user = user_db.upsert_user(make_user())
        source = FakeConnectivity()
        reconciler = SyncReconciler(user_db, _uploader(set()))
        reconciler.start(source)

        await source.emit(True)
        await reconciler.wait_idle()

        assert user_db.get_user(user.id).synced is True

    @pytest.mark.asyncio
    async def test_disconnect_does_nothing(self, user_db):
        user_db.upsert_user(make_user())
        uploader = _uploader(set())
        source = FakeConnectivity()
        reconciler = SyncReconciler(user_db, uploader)
        reconciler.start(source)

        await source.emit(False)

        assert await reconciler.wait_idle() is None
        uploader.upload_user.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_row_retried_on_next_reconnect(self, user_db):
        good, bad = _two_users(user_db)
        failing = {"bad"}

        async def upload(user):
            if user.user_name in failing:
                raise SyncError("offline again")
            return f"cloud-{user.user_name}"

        uploader = AsyncMock()
        uploader.upload_user = AsyncMock(side_effect=upload)
        source = FakeConnectivity()
        reconciler = SyncReconciler(user_db, uploader)
        reconciler.start(source)

        await source.emit(True)
        await reconciler.wait_idle()
        assert user_db.get_user(bad.id).synced is False

        failing.clear()
        await source.emit(False)
        await source.emit(True)
        await reconciler.wait_idle()

        assert user_db.get_user(bad.id).synced is True
        assert user_db.get_user(bad.id).cloud_id == "cloud-bad"
        # the good row was uploaded exactly once
        uploaded = [c.args[0].user_name for c in uploader.upload_user.await_args_list]
        assert uploaded.count("good") == 1

    @pytest.mark.asyncio
    async def test_events_during_pass_do_not_overlap(self, user_db):
        _two_users(user_db)
        release = asyncio.Event()
        active = 0
        peak = 0

        async def slow_upload(user):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await release.wait()
            active -= 1
            return f"cloud-{user.user_name}"

        uploader = AsyncMock()
        uploader.upload_user = AsyncMock(side_effect=slow_upload)
        source = FakeConnectivity()
        reconciler = SyncReconciler(user_db, uploader)
        reconciler.start(source)

        await source.emit(True)
        await asyncio.sleep(0)
        await source.emit(True)
        await source.emit(True)
        assert reconciler.in_flight is True

        release.set()
        await reconciler.wait_idle()

        assert peak == 1
        assert uploader.upload_user.await_count == 2

    @pytest.mark.asyncio
    async def test_stop_unsubscribes_and_cancels(self, user_db):
        user = user_db.upsert_user(make_user())
        never = asyncio.Event()

        async def hanging_upload(user):
            await never.wait()

        uploader = AsyncMock()
        uploader.upload_user = AsyncMock(side_effect=hanging_upload)
        source = FakeConnectivity()
        reconciler = SyncReconciler(user_db, uploader)
        reconciler.start(source)

        await source.emit(True)
        await asyncio.sleep(0)
        await reconciler.stop()

        assert source.callbacks == []
        assert reconciler.in_flight is False
        assert user_db.get_user(user.id).synced is False


# ---------------------------------------------------------------------------
# Against the HTTP client
# ---------------------------------------------------------------------------


class TestServerRejection:
    @staticmethod
    def _rejecting_client():
        request = httpx.Request("POST", "http://sync.test/api/users")
        response = httpx.Response(400, request=request)
        resp = MagicMock()
        resp.raise_for_status = MagicMock(
            side_effect=httpx.HTTPStatusError("bad request", request=request, response=response)
        )
        mock_client = AsyncMock()
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=False)
        mock_client.post = AsyncMock(return_value=resp)
        return mock_client

    @pytest.mark.asyncio
    async def test_validation_rejection_is_retried_next_pass(self, user_db):
        user = user_db.upsert_user(make_user())
        mock_client = self._rejecting_client()
        reconciler = SyncReconciler(user_db, SyncApiClient("http://sync.test"))

        with patch("src.integrations.sync_api.httpx.AsyncClient", return_value=mock_client):
            first = await reconciler.run_pass()
            second = await reconciler.run_pass()

        assert mock_client.post.await_count == 2
        assert first.failed == [user.id] and first.rejected == []
        assert second.failed == [user.id]
        stored = user_db.get_user(user.id)
        assert stored.sync_failed is False
        assert stored.sync_attempts == 2
        assert "HTTP 400" in stored.sync_error

    @pytest.mark.asyncio
    async def test_rejection_is_terminal_when_configured(self, user_db):
        user = user_db.upsert_user(make_user())
        mock_client = self._rejecting_client()
        uploader = SyncApiClient("http://sync.test", terminal_on_reject=True)
        reconciler = SyncReconciler(user_db, uploader)

        with patch("src.integrations.sync_api.httpx.AsyncClient", return_value=mock_client):
            first = await reconciler.run_pass()
            await reconciler.run_pass()

        assert first.rejected == [user.id]
        assert mock_client.post.await_count == 1
        assert user_db.get_user(user.id).sync_failed is True
