import asyncio

import pytest

from conftest import FakeRemoteStore, ManualClock, settle
from lms.book import Book
from lms.lifecycle import LifecycleNotifier, LifecyclePhase
from lms.loader import Loader, Partition
from lms.scheduler import RefreshScheduler, SchedulerState


def _setup(interval=10, background_interval=10):
    store = FakeRemoteStore(books=[Book(isbn="1", title="Dune", author=["Frank Herbert"])])
    clock = ManualClock()
    loader = Loader(store, [Partition.BOOKS], name="books")
    scheduler = RefreshScheduler(
        loader, interval=interval, background_interval=background_interval, clock=clock
    )
    return store, clock, loader, scheduler


def test_invalid_intervals_rejected():
    loader = Loader(FakeRemoteStore(), [Partition.BOOKS])
    with pytest.raises(ValueError):
        RefreshScheduler(loader, interval=0)
    with pytest.raises(ValueError):
        RefreshScheduler(loader, interval=5, background_interval=-1)


def test_start_refreshes_immediately_and_then_every_interval():
    store, clock, loader, scheduler = _setup()

    async def scenario():
        await scheduler.start()
        assert store.fetch_calls == 1
        assert len(loader.snapshot[Partition.BOOKS]) == 1
        assert scheduler.state is SchedulerState.FOREGROUND_POLLING
        assert scheduler.timer_active

        await clock.advance(9)
        assert store.fetch_calls == 1
        await clock.advance(1)
        assert store.fetch_calls == 2
        await clock.advance(10)
        assert store.fetch_calls == 3
        await scheduler.stop()

    asyncio.run(scenario())

    assert scheduler.stats.ticks == 2
    assert scheduler.state is SchedulerState.STOPPED


def test_start_is_idempotent_and_restarts_schedule():
    store, clock, loader, scheduler = _setup()

    async def scenario():
        await scheduler.start()
        await clock.advance(5)
        await scheduler.start()
        assert store.fetch_calls == 2
        # Yalnızca yeni zamanlayıcı bekliyor
        assert clock.pending_sleeps == 1
        await clock.advance(5)
        assert store.fetch_calls == 2
        await clock.advance(5)
        assert store.fetch_calls == 3
        await scheduler.stop()

    asyncio.run(scenario())


def test_tick_dropped_while_refresh_in_flight():
    store, clock, loader, scheduler = _setup()

    async def scenario():
        await scheduler.start()
        gate = store.hold()
        await clock.advance(10)
        assert loader.state.is_refreshing
        await clock.advance(10)
        await clock.advance(10)
        # Kuyruğa alma yok: bekleyen tetiklemeler atılır
        assert store.fetch_calls == 2
        assert store.connection_checks == 2
        gate.set()
        await settle()
        assert not loader.state.is_refreshing
        await scheduler.stop()

    asyncio.run(scenario())

    assert scheduler.stats.ticks == 3
    assert scheduler.stats.dropped_ticks == 2


def test_stop_cancels_timer_and_in_flight_refresh():
    store, clock, loader, scheduler = _setup()

    async def scenario():
        await scheduler.start()
        before = loader.snapshot
        store.hold()
        store.rows[Partition.BOOKS] = []
        await clock.advance(10)
        assert loader.state.is_refreshing
        await scheduler.stop()
        assert not scheduler.timer_active
        assert not loader.state.is_refreshing
        store.gate.set()
        await clock.advance(30)
        return before

    before = asyncio.run(scenario())

    assert loader.snapshot is before
    assert store.fetch_calls == 2


def test_background_loop_replaces_timer():
    store, clock, loader, scheduler = _setup(interval=10, background_interval=30)

    async def scenario():
        await scheduler.start()
        await scheduler.on_enter_background()
        await settle()
        assert scheduler.state is SchedulerState.BACKGROUND_POLLING
        assert not scheduler.timer_active
        assert scheduler.background_active
        # İlk yineleme hemen yenilenir
        assert store.fetch_calls == 2
        await clock.advance(10)
        assert store.fetch_calls == 2
        await clock.advance(20)
        assert store.fetch_calls == 3
        await scheduler.stop()

    asyncio.run(scenario())

    assert scheduler.stats.background_iterations == 2
    assert scheduler.stats.ticks == 0


def test_background_then_foreground_leaves_single_polling_mechanism():
    store, clock, loader, scheduler = _setup()

    async def scenario():
        await scheduler.start()
        await scheduler.on_enter_background()
        await settle()
        await clock.advance(10)
        assert store.fetch_calls == 3

        await scheduler.on_enter_foreground()
        assert scheduler.state is SchedulerState.FOREGROUND_POLLING
        assert scheduler.timer_active
        assert not scheduler.background_active
        # Ön plana dönüş tam olarak bir anlık yenileme yapar
        assert store.fetch_calls == 4
        assert clock.pending_sleeps == 1

        await clock.advance(10)
        assert store.fetch_calls == 5
        await clock.advance(10)
        assert store.fetch_calls == 6
        await scheduler.stop()

    asyncio.run(scenario())

    assert scheduler.stats.background_iterations == 2


def test_foreground_interrupts_background_refresh_in_flight():
    store, clock, loader, scheduler = _setup()
    published = []

    async def scenario():
        await scheduler.start()
        loader.subscribe(published.append)
        gate = store.hold()
        store.rows[Partition.BOOKS].append(Book(isbn="2", title="Emma", author=["Jane Austen"]))

        await scheduler.on_enter_background()
        await settle()
        assert loader.state.is_refreshing
        assert store.fetch_calls == 2

        foreground = asyncio.get_running_loop().create_task(scheduler.on_enter_foreground())
        await settle()
        # Arka plandaki yenileme iptal edildi, yerine yenisi başladı
        assert store.fetch_calls == 3
        assert published == []

        gate.set()
        await foreground
        await scheduler.stop()

    asyncio.run(scenario())

    assert len(published) == 1
    assert len(loader.snapshot.get(Partition.BOOKS)) == 2
    assert scheduler.stats.background_iterations == 1


def test_concurrent_transitions_run_in_order_on_the_running_loop():
    # Zamanlayıcı olay döngüsü dışında kurulur, geçişler aynı kilit için yarışır
    store, clock, loader, scheduler = _setup()

    async def scenario():
        await asyncio.gather(scheduler.start(), scheduler.on_enter_background(), scheduler.stop())

    asyncio.run(scenario())

    assert scheduler.state is SchedulerState.STOPPED
    assert not scheduler.timer_active
    assert not scheduler.background_active


def test_cancelling_background_mid_sleep_prevents_further_loads():
    store, clock, loader, scheduler = _setup()

    async def scenario():
        await scheduler.start()
        await scheduler.on_enter_background()
        await settle()
        assert store.fetch_calls == 2
        assert clock.pending_sleeps == 1
        await clock.advance(5)
        await scheduler.stop()
        await clock.advance(60)

    asyncio.run(scenario())

    assert store.fetch_calls == 2
    assert store.connection_checks == 2
    assert scheduler.stats.background_iterations == 1


def test_repeated_background_transitions_keep_one_loop():
    store, clock, loader, scheduler = _setup()

    async def scenario():
        await scheduler.start()
        await scheduler.on_enter_background()
        await settle()
        await scheduler.on_enter_background()
        await settle()
        assert clock.pending_sleeps == 1
        await scheduler.stop()

    asyncio.run(scenario())


def test_transitions_ignored_when_stopped():
    store, clock, loader, scheduler = _setup()

    async def scenario():
        await scheduler.on_enter_background()
        await scheduler.on_enter_foreground()
        await settle()

    asyncio.run(scenario())

    assert scheduler.state is SchedulerState.STOPPED
    assert store.connection_checks == 0


def test_background_refresh_failure_keeps_loop_running():
    store, clock, loader, scheduler = _setup()

    async def scenario():
        await scheduler.start()
        store.connected = False
        await scheduler.on_enter_background()
        await settle()
        assert loader.state.last_error is not None
        store.connected = True
        await clock.advance(10)
        assert loader.state.last_error is None
        await scheduler.stop()

    asyncio.run(scenario())

    assert scheduler.stats.background_iterations == 2


def test_lifecycle_notifier_drives_scheduler():
    store, clock, loader, scheduler = _setup()
    notifier = LifecycleNotifier()
    scheduler.attach(notifier)

    async def scenario():
        await scheduler.start()
        assert await notifier.publish(LifecyclePhase.BACKGROUND) is True
        await settle()
        assert scheduler.state is SchedulerState.BACKGROUND_POLLING
        # Aynı evre tekrar yayınlanırsa hiçbir şey olmaz
        assert await notifier.publish(LifecyclePhase.BACKGROUND) is False
        assert await notifier.publish(LifecyclePhase.FOREGROUND) is True
        assert scheduler.state is SchedulerState.FOREGROUND_POLLING
        scheduler.detach()
        await notifier.publish(LifecyclePhase.BACKGROUND)
        assert scheduler.state is SchedulerState.FOREGROUND_POLLING
        await scheduler.stop()

    asyncio.run(scenario())


def test_async_context_manager_starts_and_stops():
    store, clock, loader, scheduler = _setup()

    async def scenario():
        async with scheduler as running:
            assert running.state is SchedulerState.FOREGROUND_POLLING
            assert store.fetch_calls == 1
        assert scheduler.state is SchedulerState.STOPPED
        assert not scheduler.timer_active

    asyncio.run(scenario())


def test_repeating_timer_survives_failing_callback():
    clock = ManualClock()
    calls = []

    def _callback():
        calls.append(clock.now)
        if len(calls) == 1:
            raise RuntimeError("ilk tetikleme başarısız")

    async def scenario():
        handle = clock.schedule_repeating(5, _callback)
        await clock.advance(5)
        await clock.advance(5)
        assert handle.active
        handle.cancel()
        await handle.wait_closed()
        assert not handle.active

    asyncio.run(scenario())

    assert calls == [5, 10]
