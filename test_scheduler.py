import asyncio

from execution.scheduler import RunScheduler


def test_schedule_never_runs_inline() -> None:
    async def _run() -> None:
        ran: list[str] = []

        async def _runner(node_id: str) -> None:
            ran.append(node_id)

        scheduler = RunScheduler(_runner, lambda node_id: "run", delay_seconds=0)
        scheduler.schedule("a")
        assert ran == []
        await scheduler.wait_until_idle()
        assert ran == ["a"]

    asyncio.run(_run())


def test_stale_generation_is_dropped() -> None:
    async def _run() -> None:
        ran: list[str] = []

        async def _runner(node_id: str) -> None:
            ran.append(node_id)

        scheduler = RunScheduler(_runner, lambda node_id: "run", delay_seconds=0.01)
        scheduler.schedule("old")
        scheduler.new_generation()
        scheduler.schedule("new")
        await scheduler.wait_until_idle()
        assert ran == ["new"]
        assert scheduler.generation == 1

    asyncio.run(_run())


def test_park_and_release_keep_arrival_order() -> None:
    async def _run() -> None:
        ran: list[str] = []
        decision = {"value": "park"}

        async def _runner(node_id: str) -> None:
            ran.append(node_id)

        scheduler = RunScheduler(_runner, lambda node_id: decision["value"], delay_seconds=0)
        for node_id in ("a", "b", "c"):
            scheduler.schedule(node_id)
        await scheduler.wait_until_idle()
        assert ran == []
        assert scheduler.parked == ["a", "b", "c"]

        decision["value"] = "run"
        assert scheduler.release_parked() == ["a", "b", "c"]
        await scheduler.wait_until_idle()
        assert ran == ["a", "b", "c"]
        assert scheduler.parked == []

    asyncio.run(_run())


def test_dropped_continuations_do_not_run() -> None:
    async def _run() -> None:
        ran: list[str] = []

        async def _runner(node_id: str) -> None:
            ran.append(node_id)

        scheduler = RunScheduler(_runner, lambda node_id: "drop", delay_seconds=0)
        scheduler.schedule("a")
        await scheduler.wait_until_idle()
        assert ran == []
        assert scheduler.parked == []

    asyncio.run(_run())


def test_runner_failure_is_contained() -> None:
    async def _run() -> None:
        ran: list[str] = []

        async def _runner(node_id: str) -> None:
            ran.append(node_id)
            if node_id == "bad":
                raise RuntimeError("boom")

        scheduler = RunScheduler(_runner, lambda node_id: "run", delay_seconds=0)
        scheduler.schedule("bad")
        scheduler.schedule("good")
        await scheduler.wait_until_idle()
        assert ran == ["bad", "good"]

    asyncio.run(_run())


def test_runs_are_serialized() -> None:
    async def _run() -> None:
        active = {"count": 0, "max": 0}

        async def _runner(node_id: str) -> None:
            active["count"] += 1
            active["max"] = max(active["max"], active["count"])
            await asyncio.sleep(0.01)
            active["count"] -= 1

        scheduler = RunScheduler(_runner, lambda node_id: "run", delay_seconds=0)
        for node_id in ("a", "b", "c"):
            scheduler.schedule(node_id)
        await scheduler.wait_until_idle()
        assert active["max"] == 1

    asyncio.run(_run())


def test_schedule_under_stale_generation_is_refused() -> None:
    async def _run() -> None:
        ran: list[str] = []

        async def _runner(node_id: str) -> None:
            ran.append(node_id)

        scheduler = RunScheduler(_runner, lambda node_id: "run", delay_seconds=0)
        old = scheduler.generation
        scheduler.new_generation()

        assert scheduler.schedule("late", old) is None
        assert scheduler.schedule("fresh", scheduler.generation) is not None
        await scheduler.wait_until_idle()
        assert ran == ["fresh"]

    asyncio.run(_run())
