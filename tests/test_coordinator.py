import asyncio

from conftest import FakeSegmentSession

from vod_squirrel.core.cancellation import CancellationBroadcaster
from vod_squirrel.core.coordinator import SegmentedDownloadCoordinator
from vod_squirrel.media.downloader import SegmentFetcher
from vod_squirrel.models.segment import PartialFailure, Segment, SegmentState


def make_segments(directory, names):
    return [
        Segment(index=i, source_uri=f"https://cdn.example.com/{name}", local_path=directory / name)
        for i, name in enumerate(names)
    ]


def make_coordinator(session, cancellation=None, max_attempts=3):
    cancellation = cancellation or CancellationBroadcaster()
    fetcher = SegmentFetcher(session=session, max_attempts=max_attempts, base_delay=0)
    return SegmentedDownloadCoordinator(fetcher, cancellation), cancellation


def bodies_for(names):
    return {f"https://cdn.example.com/{name}": name.encode() * 10 for name in names}


def test_results_follow_index_order_not_completion_order(segment_dir):
    names = ["000.ts", "001.ts", "002.ts"]
    session = FakeSegmentSession(
        bodies_for(names),
        delays={
            "https://cdn.example.com/000.ts": 0.04,
            "https://cdn.example.com/001.ts": 0.01,
            "https://cdn.example.com/002.ts": 0.06,
        },
    )
    coordinator, _ = make_coordinator(session)

    async def run():
        job = coordinator.build_job(make_segments(segment_dir, names), concurrency_limit=2)
        return await coordinator.run(job)

    result = asyncio.run(run())

    assert [url.rsplit("/", 1)[1] for url in session.completed] == names[1:2] + names[:1] + names[2:]
    assert [path.name for path in result] == names
    assert all(path.read_bytes() == path.name.encode() * 10 for path in result)


def test_in_flight_transfers_never_exceed_limit(segment_dir):
    names = [f"{i:03d}.ts" for i in range(12)]
    session = FakeSegmentSession(
        bodies_for(names), delays={url: 0.01 for url in bodies_for(names)}
    )
    coordinator, _ = make_coordinator(session)

    async def run():
        job = coordinator.build_job(make_segments(segment_dir, names), concurrency_limit=3)
        return await coordinator.run(job)

    result = asyncio.run(run())

    assert len(result) == 12
    assert session.peak_active <= 3
    assert coordinator.peak_in_flight <= 3
    assert coordinator.in_flight == 0


def test_segment_exhausting_retries_yields_partial_failure(segment_dir):
    names = ["000.ts", "001.ts", "002.ts"]
    failing = "https://cdn.example.com/001.ts"
    session = FakeSegmentSession(bodies_for(names), failures={failing: -1})
    coordinator, _ = make_coordinator(session, max_attempts=2)

    async def run():
        job = coordinator.build_job(make_segments(segment_dir, names), concurrency_limit=2)
        return await coordinator.run(job)

    result = asyncio.run(run())

    assert isinstance(result, PartialFailure)
    assert not result.cancelled
    assert len(result.completed) == 2
    assert len(result.failed) == 1
    assert result.failed_indices == [1]
    assert result.failed[0].state is SegmentState.FAILED
    assert session.requests.count(failing) == 2
    assert coordinator.stats.segment_retries == 2
    assert not list(segment_dir.glob("*.part"))


def test_transient_failure_is_retried_to_success(segment_dir):
    names = ["000.ts", "001.ts"]
    flaky = "https://cdn.example.com/000.ts"
    session = FakeSegmentSession(bodies_for(names), failures={flaky: 1})
    coordinator, _ = make_coordinator(session, max_attempts=3)

    async def run():
        job = coordinator.build_job(make_segments(segment_dir, names), concurrency_limit=2)
        return await coordinator.run(job)

    result = asyncio.run(run())

    assert [path.name for path in result] == names
    assert session.requests.count(flaky) == 2


def test_cancellation_stops_new_transfers_and_removes_partials(segment_dir):
    names = [f"{i:03d}.ts" for i in range(5)]
    session = FakeSegmentSession(bodies_for(names), chunks=5, chunk_delay=0.02)
    coordinator, cancellation = make_coordinator(session)

    async def run():
        job = coordinator.build_job(make_segments(segment_dir, names), concurrency_limit=1)
        task = asyncio.create_task(coordinator.run(job))
        await asyncio.sleep(0.15)
        cancellation.cancel()
        return await task

    result = asyncio.run(run())

    assert isinstance(result, PartialFailure)
    assert result.cancelled
    assert len(session.requests) < len(names)
    assert not list(segment_dir.glob("*.part"))
    for segment in result.failed:
        assert segment.error == "cancelled"
        assert not segment.local_path.exists()


def test_cancelled_before_start_issues_no_requests(segment_dir):
    names = ["000.ts", "001.ts"]
    session = FakeSegmentSession(bodies_for(names))
    coordinator, cancellation = make_coordinator(session)
    cancellation.cancel()

    async def run():
        job = coordinator.build_job(make_segments(segment_dir, names), concurrency_limit=2)
        return await coordinator.run(job)

    result = asyncio.run(run())

    assert isinstance(result, PartialFailure)
    assert result.cancelled
    assert session.requests == []


def test_complete_files_on_disk_are_resumed(segment_dir):
    names = ["000.ts", "001.ts"]
    (segment_dir / "000.ts").write_bytes(b"already here")
    session = FakeSegmentSession(bodies_for(names))
    coordinator, _ = make_coordinator(session)

    async def run():
        job = coordinator.build_job(make_segments(segment_dir, names), concurrency_limit=2)
        return await coordinator.run(job)

    result = asyncio.run(run())

    assert [path.name for path in result] == names
    assert session.requests == ["https://cdn.example.com/001.ts"]
    assert coordinator.stats.segments_resumed == 1
    assert (segment_dir / "000.ts").read_bytes() == b"already here"


def test_empty_files_are_downloaded_again(segment_dir):
    names = ["000.ts"]
    (segment_dir / "000.ts").write_bytes(b"")
    session = FakeSegmentSession(bodies_for(names))
    coordinator, _ = make_coordinator(session)

    async def run():
        job = coordinator.build_job(make_segments(segment_dir, names), concurrency_limit=1)
        return await coordinator.run(job)

    result = asyncio.run(run())

    assert result[0].read_bytes() == b"000.ts" * 10
    assert session.requests == ["https://cdn.example.com/000.ts"]
