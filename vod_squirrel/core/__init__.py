"""
Core application engine.

The `Orchestrator` acts as the high-level coordinator, resolving a video into a
segment job and delegating the transfers to the `SegmentedDownloadCoordinator`.
Both share a `CancellationBroadcaster` so that a single signal stops all work.
"""
