"""Cross-device verification detection: realtime push plus foreground polling."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from src.manito.auth.exceptions import AuthCoreError
from src.manito.auth.models import AuthStatus, VerificationChanged
from src.manito.auth.provider import ChangeFeed, IdentityProvider
from src.manito.auth.reconciler import SessionReconciler
from src.manito.auth.state_machine import AuthStateMachine
from src.manito.services.profiles import ProvisioningResult

logger = logging.getLogger(__name__)

POLLABLE_STATUSES = (AuthStatus.AWAITING_VERIFICATION, AuthStatus.VERIFIED_UNPROVISIONED)


class VerificationWatcher:
    """
    Detects verification completed on another device.

    Push path: a change-feed subscription scoped to the current user. On a
    verification false -> true update the session is re-fetched and reconciled.

    Fallback poll: `on_foreground` re-fetches the session at most once per
    cooldown window, and only while verification or provisioning is pending.

    Both paths go through SessionReconciler, whose provisioning is
    deduplicated per user, so detecting the same verification twice is harmless.

    Attributes:
        cooldown_seconds: Minimum time between two foreground polls
        user_id: User the push subscription is scoped to (None when idle)
    """

    def __init__(
        self,
        machine: AuthStateMachine,
        provider: IdentityProvider,
        reconciler: SessionReconciler,
        change_feed: ChangeFeed | None = None,
        cooldown_seconds: float = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.machine = machine
        self.provider = provider
        self.reconciler = reconciler
        self.change_feed = change_feed
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._handle: Any = None
        self.user_id: str | None = None
        self._last_check: float | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_watching(self) -> bool:
        return self._handle is not None

    async def watch(self, user_id: str) -> None:
        """Subscribe to verification changes for `user_id` (no-op if already watching it)."""
        if self.user_id == user_id and self._handle is not None:
            return
        await self.unwatch()
        self.user_id = user_id
        if self.change_feed is None:
            logger.info("Realtime disabled, relying on foreground polling")
            return

        try:
            self._handle = await self.change_feed.subscribe_verification(user_id, self._on_change)
        except AuthCoreError as e:
            logger.warning(f"Verification subscription failed, falling back to polling: {e}")
            self._handle = None

    async def unwatch(self) -> None:
        """Tear down the push subscription and any pending push handling."""
        handle, self._handle = self._handle, None
        self.user_id = None
        if handle is not None and self.change_feed is not None:
            try:
                await self.change_feed.unsubscribe(handle)
            except Exception as e:
                logger.warning(f"Failed to unsubscribe verification feed: {e}")
            logger.info("Cleaned up verification monitoring")

        tasks = [task for task in self._tasks if task is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _on_change(self, change: VerificationChanged) -> None:
        if not change.became_verified or change.user_id != self.user_id:
            return
        logger.info("Email verification detected via real-time sync")
        task = asyncio.get_running_loop().create_task(self.handle_push())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def handle_push(self) -> ProvisioningResult | None:
        """Re-fetch the session after a push notification and reconcile it."""
        return await self._refetch_and_reconcile(source="realtime-sync")

    async def on_foreground(self) -> ProvisioningResult | None:
        """
        Fallback check on an app-foreground transition.

        Skipped when the user is already ready (or not waiting on anything),
        and when the previous check was less than `cooldown_seconds` ago.
        """
        if self.machine.state.status not in POLLABLE_STATUSES:
            return None

        now = self._clock()
        if self._last_check is not None and now - self._last_check <= self.cooldown_seconds:
            logger.debug("Foreground check skipped (cooldown)")
            return None
        self._last_check = now

        logger.info("Fallback verification check on app focus")
        return await self._refetch_and_reconcile(source="fallback-app-focus")

    async def check_now(self) -> bool:
        """Manual verification check; ignores the cooldown. Returns whether verified."""
        self._last_check = self._clock()
        await self._refetch_and_reconcile(source="manual-verification-check")
        return self.machine.state.is_verified

    async def _refetch_and_reconcile(self, source: str) -> ProvisioningResult | None:
        try:
            session = await self.provider.refresh_session()
        except AuthCoreError as e:
            logger.warning(f"Session re-fetch failed during {source}: {e}")
            return None

        if session is None or not session.is_verified:
            logger.info(f"Verification not yet complete ({source})")
            return None
        return await self.reconciler.observe_verification(session, source=source)
