"""
Registers EventSub subscriptions for a websocket session through the Helix API.
"""

import asyncio
import logging
from typing import Any, Iterable

import aiohttp

from vod_squirrel.exceptions import RegistrationError
from vod_squirrel.models.session import (
    SUBSCRIPTION_TYPE_STREAM_OFFLINE,
    RegistrationReport,
    Subscription,
    SubscriptionResult,
)

log = logging.getLogger(__name__)


class SubscriptionRegistrar:
    """
    Issues one subscription request per subject and reports each outcome.

    A failure for one subject never aborts the batch and is not retried; the
    caller decides what to do with the failed entries of the report.
    """

    SUBSCRIPTIONS_URL = "https://api.twitch.tv/helix/eventsub/subscriptions"

    def __init__(
        self,
        client_id: str,
        access_token: str,
        session: Any | None = None,
        subscription_type: str = SUBSCRIPTION_TYPE_STREAM_OFFLINE,
    ):
        """
        Args:
            client_id: Client ID the access token was issued for.
            access_token: User access token sent as a bearer token.
            session: An aiohttp-compatible session; one is created on demand.
            subscription_type: EventSub subscription type to request.
        """
        self.client_id = client_id
        self._access_token = access_token
        self.subscription_type = subscription_type
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> Any:
        if self._session is None or getattr(self._session, "closed", False):
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=30, connect=15)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def register(
        self, session_id: str, subject_ids: Iterable[int]
    ) -> RegistrationReport:
        """
        Subscribes every subject to the given transport session.

        Returns:
            A report with one SubscriptionResult per subject.
        """
        subject_ids = list(dict.fromkeys(subject_ids))
        report = RegistrationReport(session_id=session_id)
        if not subject_ids:
            return report

        results = await asyncio.gather(
            *(self._register_one(session_id, subject_id) for subject_id in subject_ids)
        )
        for result in results:
            report.results[result.subject_id] = result

        if report.failed:
            log.warning(
                f"[yellow]{len(report.failed)} of {len(subject_ids)} subscriptions "
                f"failed.[/yellow]"
            )
        else:
            log.info("All broadcasters listened successfully!")
        return report

    async def _register_one(self, session_id: str, subject_id: int) -> SubscriptionResult:
        subscription = Subscription(
            subject_id=subject_id,
            transport_session_id=session_id,
            kind=self.subscription_type,
        )
        log.info(
            f"Requesting `{subscription.kind}` events for broadcaster ID {subject_id}"
        )
        try:
            status = await self._post(subscription)
        except RegistrationError as e:
            log.error(f"[red]{e}[/red]")
            return SubscriptionResult(
                subject_id=subject_id, ok=False, status=e.status, error=str(e)
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.error(f"[red]Subscription request for {subject_id} failed: {e!r}[/red]")
            return SubscriptionResult(subject_id=subject_id, ok=False, error=repr(e))

        return SubscriptionResult(subject_id=subject_id, ok=True, status=status)

    async def _post(self, subscription: Subscription) -> int:
        session = await self._get_session()
        headers = {
            "Client-Id": self.client_id,
            "Authorization": f"Bearer {self._access_token}",
        }
        async with session.post(
            self.SUBSCRIPTIONS_URL,
            json=subscription.to_request_body(),
            headers=headers,
        ) as response:
            if response.status == 409:
                log.debug(
                    f"Subscription for {subscription.subject_id} already exists."
                )
                return response.status
            if not 200 <= response.status < 300:
                body = await response.text()
                raise RegistrationError(
                    subscription.subject_id,
                    f"HTTP {response.status}: {body.strip()[:200]}",
                    status=response.status,
                )
            return response.status
