import asyncio

import aiohttp
from conftest import FakeHelixSession

from vod_squirrel.events.registration import SubscriptionRegistrar


def test_each_subject_gets_its_own_outcome():
    helix = FakeHelixSession(statuses={42: 500, 99: 202})
    registrar = SubscriptionRegistrar("client-id", "secret-token", session=helix)

    report = asyncio.run(registrar.register("session-1", [42, 99]))

    assert report.session_id == "session-1"
    assert not report[42].ok
    assert report[42].status == 500
    assert "500" in report[42].error
    assert report[99].ok
    assert report.succeeded == [99]
    assert len(helix.requests) == 2


def test_request_body_and_headers():
    helix = FakeHelixSession()
    registrar = SubscriptionRegistrar("client-id", "secret-token", session=helix)

    asyncio.run(registrar.register("session-1", [99]))

    request = helix.requests[0]
    assert request["url"] == SubscriptionRegistrar.SUBSCRIPTIONS_URL
    assert request["headers"] == {
        "Client-Id": "client-id",
        "Authorization": "Bearer secret-token",
    }
    assert request["json"] == {
        "type": "stream.offline",
        "version": "1",
        "condition": {"broadcaster_user_id": "99"},
        "transport": {"method": "websocket", "session_id": "session-1"},
    }


def test_conflict_counts_as_already_registered():
    helix = FakeHelixSession(statuses={7: 409})
    registrar = SubscriptionRegistrar("client-id", "token", session=helix)

    report = asyncio.run(registrar.register("session-1", [7]))

    assert report[7].ok
    assert report[7].status == 409


def test_network_error_is_reported_per_subject():
    helix = FakeHelixSession(errors={5: aiohttp.ClientConnectionError("reset")})
    registrar = SubscriptionRegistrar("client-id", "token", session=helix)

    report = asyncio.run(registrar.register("session-1", [5, 6]))

    assert not report[5].ok
    assert "reset" in report[5].error
    assert report[6].ok


def test_duplicate_subjects_are_registered_once():
    helix = FakeHelixSession()
    registrar = SubscriptionRegistrar("client-id", "token", session=helix)

    report = asyncio.run(registrar.register("session-1", [3, 3, 4]))

    assert sorted(report.results) == [3, 4]
    assert len(helix.requests) == 2


def test_empty_subject_list_makes_no_requests():
    helix = FakeHelixSession()
    registrar = SubscriptionRegistrar("client-id", "token", session=helix)

    report = asyncio.run(registrar.register("session-1", []))

    assert report.results == {}
    assert helix.requests == []
