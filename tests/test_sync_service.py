import asyncio

import pytest

from core.models import (
    ProgressSnapshot, SeedRecord, RejectInfo, ThemeMode, TaskStatus, ConnectivityStatus, DataKind
)
from database.manager import StorageWriteError
from services.api_client import (
    AuthenticationError, HttpStatusError, MalformedResponseError,
    NetworkUnreachableError, RequestTimeoutError
)
from services.sync_service import RejectLimitReachedError, SyncErrorKind, SyncService
from services.user_service import UserService
from shared.models import ThemePreferenceResponse

async def settle(service):
    for _ in range(5):
        await asyncio.sleep(0)
    await service.wait_idle()

# ===== SAVE =====

def test_local_first_durability_online_and_offline(make_service, api):
    async def scenario():
        service = make_service()
        assert await service.save_progress(ProgressSnapshot(10, 1, 3)) == ProgressSnapshot(10, 1, 3)

        api.offline = True
        await service.save_progress(ProgressSnapshot(20, 2, 4))
        await service.save_seed(SeedRecord(42, 4))
        await service.save_reject_info(RejectInfo(1, 4))
        await service.save_theme_preference(ThemeMode.DARK)
        await service.save_task_history("Walk", 10, TaskStatus.COMPLETED)

        assert service.get_progress() == ProgressSnapshot(20, 2, 4)
        assert service.store.read_seed() == SeedRecord(42, 4)
        assert service.get_reject_info(4) == RejectInfo(1, 4)
        assert service.get_theme_preference() is ThemeMode.DARK
        assert [e.quest for e in service.store.read_task_history()] == ["Walk"]
        assert len(service.queue) == 5

    asyncio.run(scenario())

def test_offline_save_returns_local_and_enqueues_once(make_service, api):
    async def scenario():
        api.offline = True
        service = make_service(online=False)
        result = await service.save_progress(ProgressSnapshot(100, 5, 10))

        assert result == ProgressSnapshot(100, 5, 10)
        assert len(service.queue) == 1
        assert service.stats.queued_operations == 1
        assert service.stats.failed_pushes == 1
        assert api.call_names() == ["save_progress"]

    asyncio.run(scenario())

def test_storage_failure_propagates_without_push(make_service, api, monkeypatch):
    async def scenario():
        service = make_service()

        def broken_write(data):
            raise OSError("read-only filesystem")

        monkeypatch.setattr(service.store.file, "_write_sync", broken_write)
        with pytest.raises(StorageWriteError):
            await service.save_progress(ProgressSnapshot(1, 1, 1))
        assert api.calls == []
        assert len(service.queue) == 0

    asyncio.run(scenario())

# ===== DRAIN =====

def test_reconnect_drains_queue_in_order_exactly_once(make_service, api):
    async def scenario():
        api.offline = True
        service = make_service(online=False)
        await service.start()

        await service.save_progress(ProgressSnapshot(5, 1, 7))
        await service.save_seed(SeedRecord(99, 7))
        await service.save_reject_info(RejectInfo(1, 7))
        assert len(service.queue) == 3

        api.offline = False
        api.calls.clear()
        service.connectivity.set_status(ConnectivityStatus.AVAILABLE)
        await settle(service)

        assert api.call_names() == ["save_progress", "save_seed", "update_reject_info"]
        assert len(service.queue) == 0
        assert service.stats.replayed_operations == 3
        await service.close()

    asyncio.run(scenario())

def test_going_offline_only_clears_flag(make_service, api):
    async def scenario():
        service = make_service(online=True)
        await service.start()
        service.connectivity.set_status(ConnectivityStatus.LOSING)
        await settle(service)

        assert not service.is_online
        assert api.calls == []
        await service.close()

    asyncio.run(scenario())

def test_start_subscribes_once(make_service):
    async def scenario():
        service = make_service()
        await service.start()
        await service.start()
        await settle(service)
        assert service.connectivity._status.subscribers_count == 1
        await service.close()

    asyncio.run(scenario())

def test_replay_does_not_roll_local_back(make_service, api):
    async def scenario():
        api.offline = True
        service = make_service(online=False)
        await service.start()
        await service.save_progress(ProgressSnapshot(10, 1, 7))
        await service.save_progress(ProgressSnapshot(30, 2, 8))
        await service.save_seed(SeedRecord(1, 8))
        await service.save_seed(SeedRecord(2, 8))

        api.offline = False
        service.connectivity.set_status(ConnectivityStatus.AVAILABLE)
        await settle(service)

        assert service.get_progress() == ProgressSnapshot(30, 2, 8)
        assert service.store.read_seed() == SeedRecord(2, 8)
        assert (api.points, api.seed) == (30, (2, 8))
        await service.close()

    asyncio.run(scenario())

def test_history_replays_keep_order_after_failure(make_service, api):
    async def scenario():
        api.offline = True
        service = make_service(online=False)
        await service.start()
        await service.save_task_history("first", 1, TaskStatus.COMPLETED)
        await service.save_task_history("second", 2, TaskStatus.REJECTED)

        api.offline = False
        api.failures["save_task_history"] = HttpStatusError(503, "busy")
        service.connectivity.set_status(ConnectivityStatus.AVAILABLE)
        await settle(service)
        assert len(service.queue) == 2
        assert api.history == []

        del api.failures["save_task_history"]
        await service.save_task_history("third", 3, TaskStatus.COMPLETED)
        await service.process_pending_operations()
        assert [item["quest"] for item in api.history] == ["third", "first", "second"]
        await service.close()

    asyncio.run(scenario())

# ===== ERRORS =====

def test_error_classification():
    assert SyncService.classify_error(AuthenticationError(403)) is SyncErrorKind.AUTH
    assert SyncService.classify_error(HttpStatusError(500)) is SyncErrorKind.HTTP
    assert SyncService.classify_error(RequestTimeoutError("slow")) is SyncErrorKind.TIMEOUT
    assert SyncService.classify_error(NetworkUnreachableError("down")) is SyncErrorKind.NETWORK
    assert SyncService.classify_error(MalformedResponseError("bad")) is SyncErrorKind.MALFORMED

def test_auth_error_is_flagged_and_queued(make_service, api, make_token_store):
    async def scenario():
        seen = []
        service = make_service(on_auth_error=seen.append)
        tokens = make_token_store()
        await tokens.save_token("jwt-old")
        api.failures["save_progress"] = AuthenticationError(401, "Token is not valid")

        result = await service.save_progress(ProgressSnapshot(7, 1, 2))
        assert result == ProgressSnapshot(7, 1, 2)
        assert service.auth_error_detected
        assert len(seen) == 1 and seen[0].status == 401
        assert len(service.queue) == 1
        assert tokens.get_token() == "jwt-old"
        assert service.health_check()["status"] == "degraded"

    asyncio.run(scenario())

# ===== RECONCILIATION =====

def test_progress_tie_break_remote_with_more_points_wins(make_service, api):
    async def scenario():
        service = make_service()
        await service.store.save_progress(ProgressSnapshot(50, 2, 10))
        api.points, api.streak, api.last_day = 80, 1, 10

        stream = service.observe_progress()
        assert await stream.__anext__() == ProgressSnapshot(50, 2, 10)
        await service.wait_idle()
        assert service.get_progress() == ProgressSnapshot(80, 1, 10)
        assert await stream.__anext__() == ProgressSnapshot(80, 1, 10)
        await stream.aclose()
        await service.wait_idle()

    asyncio.run(scenario())

def test_progress_tie_break_keeps_local_when_remote_is_behind(make_service, api):
    async def scenario():
        service = make_service()
        await service.store.save_progress(ProgressSnapshot(80, 5, 10))
        api.points, api.streak, api.last_day = 50, 1, 9

        stream = service.observe_progress()
        await stream.__anext__()
        await service.wait_idle()
        assert service.get_progress() == ProgressSnapshot(80, 5, 10)
        assert service.stats.reconciliations == 1
        await stream.aclose()

    asyncio.run(scenario())

def test_offline_observation_does_not_touch_network(make_service, api):
    async def scenario():
        service = make_service(online=False)
        stream = service.observe_theme_preference()
        assert await stream.__anext__() is ThemeMode.SYSTEM
        await service.wait_idle()
        assert api.calls == []
        await stream.aclose()

    asyncio.run(scenario())

def test_reject_info_reconcile_adopts_any_difference(make_service, api):
    async def scenario():
        service = make_service()
        await service.store.save_reject_info(RejectInfo(1, 30))
        api.reject = (3, 30)

        stream = service.observe_reject_info()
        await stream.__anext__()
        await service.wait_idle()
        assert service.get_reject_info(30) == RejectInfo(3, 30)
        await stream.aclose()
        await service.wait_idle()

    asyncio.run(scenario())

def test_missing_remote_record_is_not_an_error(make_service, api):
    async def scenario():
        service = make_service()
        stream = service.observe_reject_info()
        await stream.__anext__()
        await service.wait_idle()
        assert service.stats.last_error is None
        assert service.get_reject_info(5) == RejectInfo(0, 5)
        await stream.aclose()

    asyncio.run(scenario())

def test_theme_save_and_reconcile_do_not_flap(make_service, api):
    async def scenario():
        service = make_service()
        api.theme = ThemeMode.LIGHT.value
        api.theme_gate = asyncio.Event()

        save = asyncio.create_task(service.save_theme_preference(ThemeMode.DARK))
        while "save_theme_preference" not in api.call_names():
            await asyncio.sleep(0.001)

        stream = service.observe_theme_preference()
        assert await stream.__anext__() is ThemeMode.DARK
        await asyncio.sleep(0.01)

        api.theme_gate.set()
        assert await save is ThemeMode.DARK
        await service.wait_idle()

        assert service.get_theme_preference() is ThemeMode.DARK
        assert api.theme == ThemeMode.DARK.value
        await stream.aclose()
        await service.wait_idle()

    asyncio.run(scenario())

def test_theme_reconcile_before_save_is_overridden_by_save(make_service, api):
    async def scenario():
        service = make_service()
        api.theme = ThemeMode.LIGHT.value

        reconcile = asyncio.create_task(service._reconcile_theme())
        save = asyncio.create_task(service.save_theme_preference(ThemeMode.DARK))
        await asyncio.gather(reconcile, save)

        assert service.get_theme_preference() is ThemeMode.DARK
        assert api.theme == ThemeMode.DARK.value

    asyncio.run(scenario())

def test_pending_theme_push_blocks_reconcile(make_service, api):
    async def scenario():
        api.offline = True
        service = make_service()
        await service.save_theme_preference(ThemeMode.LIGHT)
        api.offline = False
        api.theme = ThemeMode.DARK.value

        await service._reconcile_theme()
        assert service.get_theme_preference() is ThemeMode.LIGHT
        assert "get_theme_preference" not in api.call_names()

    asyncio.run(scenario())

# ===== SEED =====

def test_seed_rollover_happens_once_per_day(make_service, api):
    async def scenario():
        service = make_service()
        await service.store.save_seed(SeedRecord(555, 100))

        seed = await service.get_current_seed(101)
        assert seed == 1718000000000
        assert service.store.read_seed() == SeedRecord(1718000000000, 101)

        assert await service.get_current_seed(101) == seed
        assert api.call_names().count("save_seed") == 1

    asyncio.run(scenario())

def test_concurrent_boundary_reads_see_one_seed(make_service, api):
    async def scenario():
        ticks = iter(range(1000, 2000))
        service = make_service(clock=lambda: next(ticks))
        await service.store.save_seed(SeedRecord(1, 10))

        seeds = await asyncio.gather(*(service.get_current_seed(11) for _ in range(5)))
        assert set(seeds) == {1000}
        assert api.call_names().count("save_seed") == 1

    asyncio.run(scenario())

def test_observe_seed_emits_fresh_seed_for_today(make_service, api):
    async def scenario():
        service = make_service(online=False)
        await service.store.save_seed(SeedRecord(3, 200))

        stream = service.observe_seed(201)
        assert await stream.__anext__() == 1718000000000
        assert service.store.read_seed().day == 201
        await stream.aclose()

    asyncio.run(scenario())

def test_seed_reconcile_ignores_other_days(make_service, api):
    async def scenario():
        service = make_service()
        await service.store.save_seed(SeedRecord(10, 50))

        api.seed = (777, 49)
        await service._reconcile_seed()
        assert service.store.read_seed() == SeedRecord(10, 50)

        api.seed = (888, 50)
        await service._reconcile_seed()
        assert service.store.read_seed() == SeedRecord(888, 50)

    asyncio.run(scenario())

# ===== TASK HISTORY =====

def test_completed_quest_advances_goal(make_service, api):
    async def scenario():
        service = make_service()
        await service.save_task_history("Read", 15, TaskStatus.COMPLETED, goal_id="g1", goal_progress=2)
        await service.save_task_history("Skip", 0, TaskStatus.REJECTED, goal_id="g1", goal_progress=2)
        await service.save_task_history("Walk", 5, TaskStatus.COMPLETED, goal_id="g1", goal_progress=0)
        assert api.goal_updates == [("g1", 2)]

    asyncio.run(scenario())

def test_goal_failure_is_dropped(make_service, api):
    async def scenario():
        service = make_service()
        api.failures["update_goal_progress"] = HttpStatusError(500, "goal service down")
        entry = await service.save_task_history("Read", 15, TaskStatus.COMPLETED, goal_id="g1", goal_progress=2)

        assert entry.quest == "Read"
        assert len(service.queue) == 0
        assert [item["quest"] for item in api.history] == ["Read"]

    asyncio.run(scenario())

def test_replayed_history_push_also_advances_goal(make_service, api):
    async def scenario():
        api.offline = True
        service = make_service()
        await service.save_task_history("Read", 15, TaskStatus.COMPLETED, goal_id="g9", goal_progress=1)
        assert api.goal_updates == []

        api.offline = False
        await service.process_pending_operations()
        assert api.goal_updates == [("g9", 1)]

    asyncio.run(scenario())

def test_history_fetch_replaces_local_newest_first(make_service, api):
    async def scenario():
        service = make_service()
        await service.save_task_history("local-only", 1, TaskStatus.COMPLETED)
        api.history = [
            {"quest": "old", "points": 1, "status": "COMPLETED", "timestamp": "2025-06-01T08:00:00.000Z"},
            {"quest": "new", "points": 2, "status": "REJECTED", "timestamp": "2025-06-03T08:00:00.000Z"},
            {"quest": "odd", "points": 3, "status": "COMPLETED", "timestamp": "not a date"},
        ]

        entries = await service.get_task_history()
        assert [e.quest for e in entries] == ["new", "old", "odd"]
        assert entries[2].date == "Unknown"
        assert [e.quest for e in service.store.read_task_history()] == ["new", "old", "odd"]

    asyncio.run(scenario())

def test_history_falls_back_to_local(make_service, api):
    async def scenario():
        service = make_service()
        await service.save_task_history("mine", 1, TaskStatus.COMPLETED)

        api.failures["get_task_history"] = RequestTimeoutError("slow")
        assert [e.quest for e in await service.get_task_history()] == ["mine"]

        service.is_online = False
        del api.failures["get_task_history"]
        api.calls.clear()
        assert [e.quest for e in await service.get_task_history()] == ["mine"]
        assert api.calls == []

    asyncio.run(scenario())

def test_clear_history_is_queued_in_history_lane(make_service, api):
    async def scenario():
        service = make_service()
        await service.save_task_history("one", 1, TaskStatus.COMPLETED)

        api.offline = True
        await service.clear_task_history()
        assert service.store.read_task_history() == []
        assert service.queue.has_pending(DataKind.TASK_HISTORY)

        # Очистка уходит на сервер раньше, чем журнал запрашивается заново
        api.offline = False
        api.calls.clear()
        assert await service.get_task_history() == []
        assert api.call_names() == ["clear_task_history", "get_task_history"]
        assert api.history == []

    asyncio.run(scenario())

# ===== QUEST FLOW =====

def test_claim_quest_updates_streak_and_history(make_service, api):
    async def scenario():
        service = make_service()
        await service.store.save_progress(ProgressSnapshot(100, 3, 364))

        progress = await service.claim_quest("Stretch", 25, 365)
        assert progress == ProgressSnapshot(125, 4, 365)
        history = service.store.read_task_history()
        assert history[0].quest == "Stretch"
        assert history[0].status is TaskStatus.COMPLETED
        assert api.points == 125

    asyncio.run(scenario())

def test_reject_limit_per_day(make_service, api):
    async def scenario():
        service = make_service(max_rejects_per_day=5)
        for _ in range(5):
            await service.reject_quest("Boring", 10, 42)
        assert service.remaining_rejects(42) == 0

        with pytest.raises(RejectLimitReachedError):
            await service.reject_quest("Boring", 10, 42)

        assert service.remaining_rejects(43) == 5
        info = await service.reject_quest("Fresh", 10, 43)
        assert info == RejectInfo(1, 43)
        rejected = [e for e in service.store.read_task_history() if e.status is TaskStatus.REJECTED]
        assert len(rejected) == 6

    asyncio.run(scenario())

# ===== END TO END =====

def test_register_offline_save_and_converge(make_service, api, make_token_store):
    async def scenario():
        service = make_service(online=True)
        await service.start()
        users = UserService(api, make_token_store(), service)

        await users.register("tester", "t@example.com", "secret")
        assert users.is_logged_in()

        assert await service.save_progress(ProgressSnapshot(0, 0, -1)) == ProgressSnapshot(0, 0, -1)
        assert len(service.queue) == 0

        service.connectivity.set_status(ConnectivityStatus.UNAVAILABLE)
        await settle(service)
        api.offline = True
        assert await service.save_progress(ProgressSnapshot(100, 1, 50)) == ProgressSnapshot(100, 1, 50)
        assert len(service.queue) == 1

        api.offline = False
        service.connectivity.set_status(ConnectivityStatus.AVAILABLE)
        await settle(service)
        assert len(service.queue) == 0
        assert (api.points, api.streak, api.last_day) == (100, 1, 50)

        stream = service.observe_progress()
        assert await stream.__anext__() == ProgressSnapshot(100, 1, 50)
        await service.wait_idle()
        assert service.get_progress() == ProgressSnapshot(100, 1, 50)
        await stream.aclose()
        await service.close()

    asyncio.run(scenario())

# ===== SUPERSEDED AND RESTORED OPERATIONS =====

def test_newer_theme_save_supersedes_queued_push(make_service, api):
    async def scenario():
        service = make_service()
        api.failures["save_theme_preference"] = HttpStatusError(500, "boom")
        await service.save_theme_preference(ThemeMode.DARK)
        assert service.queue.has_pending(DataKind.THEME)

        del api.failures["save_theme_preference"]
        assert await service.save_theme_preference(ThemeMode.LIGHT) is ThemeMode.LIGHT
        assert not service.queue.has_pending(DataKind.THEME)

        assert await service.refresh()
        assert service.get_theme_preference() is ThemeMode.LIGHT
        assert api.theme == ThemeMode.LIGHT.value

    asyncio.run(scenario())

def test_newer_reject_info_supersedes_queued_push(make_service, api):
    async def scenario():
        service = make_service()
        api.failures["update_reject_info"] = HttpStatusError(500, "boom")
        await service.save_reject_info(RejectInfo(1, 100))

        del api.failures["update_reject_info"]
        await service.save_reject_info(RejectInfo(2, 100))
        assert len(service.queue) == 0

        assert await service.refresh()
        assert service.get_reject_info(100) == RejectInfo(2, 100)
        assert api.reject == (2, 100)
        assert service.remaining_rejects(100) == 3

    asyncio.run(scenario())

def test_scalar_replay_sends_latest_local_value(make_service, api):
    async def scenario():
        api.offline = True
        service = make_service()
        await service.save_theme_preference(ThemeMode.DARK)
        await service.save_theme_preference(ThemeMode.LIGHT)
        await service.save_reject_info(RejectInfo(1, 7))
        await service.save_reject_info(RejectInfo(2, 7))
        assert len(service.queue) == 2

        api.offline = False
        api.calls.clear()
        assert await service.process_pending_operations() == 2
        assert api.call_names() == ["save_theme_preference", "update_reject_info"]
        assert api.theme == ThemeMode.LIGHT.value
        assert api.reject == (2, 7)

    asyncio.run(scenario())

def test_save_returns_server_confirmed_value(make_service, api):
    async def scenario():
        service = make_service()

        async def normalizing_theme(request):
            api.calls.append(("save_theme_preference", request))
            return ThemePreferenceResponse(theme_preference=ThemeMode.SYSTEM.value)

        api.save_theme_preference = normalizing_theme
        assert await service.save_theme_preference(ThemeMode.DARK) is ThemeMode.SYSTEM
        assert service.get_theme_preference() is ThemeMode.SYSTEM

        api.offline = True
        assert await service.save_progress(ProgressSnapshot(3, 1, 2)) == ProgressSnapshot(3, 1, 2)

    asyncio.run(scenario())

def test_pending_operations_survive_restart(make_service, api):
    async def scenario():
        api.offline = True
        first = make_service(online=False)
        await first.start()
        await first.claim_quest("Offline", 7, 120, goal_id="g1", goal_progress=1)
        assert len(first.queue) == 2
        await first.close()

        api.offline = False
        second = make_service(online=True)
        await second.start()

        assert len(second.queue) == 0
        assert (api.points, api.streak, api.last_day) == (7, 1, 120)
        assert [item["quest"] for item in api.history] == ["Offline"]
        assert api.goal_updates == [("g1", 1)]
        assert second.store.read_pending_operations() == []
        assert [e.quest for e in await second.get_task_history()] == ["Offline"]
        await second.close()

    asyncio.run(scenario())

def test_restored_operations_wait_while_offline(make_service, api):
    async def scenario():
        api.offline = True
        first = make_service(online=False)
        await first.save_task_history("kept", 1, TaskStatus.COMPLETED)
        await first.clear_task_history()

        second = make_service(online=False)
        await second.start()
        assert [op.payload["action"] for op in second.queue.operations()] == ["append", "clear"]
        assert api.call_names() == ["save_task_history", "clear_task_history"]
        await second.close()

    asyncio.run(scenario())

def test_damaged_queue_records_are_skipped(make_service, api):
    async def scenario():
        service = make_service(online=False)
        await service.store.save_pending_operations([
            {"kind": "bogus", "payload": {"action": "push"}},
            {"kind": "task_history", "payload": {"action": "append"}},
            {"kind": "theme", "payload": {"action": "push"}, "attempts": 2},
        ])
        await service.start()

        restored = service.queue.operations()
        assert [op.kind for op in restored] == [DataKind.THEME]
        assert restored[0].attempts == 2
        assert [record["kind"] for record in service.store.read_pending_operations()] == ["theme"]
        await service.close()

    asyncio.run(scenario())
