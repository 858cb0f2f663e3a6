"""Runtime handle owning the auth core's subscriptions and lifecycle."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Coroutine
from typing import Any

from supabase import AsyncClient

from src.manito.auth.callback_router import CallbackResult, CallbackRouter, SessionCodeResolver
from src.manito.auth.exceptions import (
    AuthCoreError,
    InvalidCredentialError,
    ResolutionFailedError,
    SessionRestoreCorruptedError,
)
from src.manito.auth.models import (
    AuthEvent,
    AuthState,
    AuthStatus,
    InitializeStarted,
    NoSessionFound,
    ProviderEvent,
    ProviderSignedIn,
    ProviderSignedOut,
    ProviderTokenRefreshed,
    ProviderUserUpdated,
    SessionRestored,
    SessionRestoreFailed,
    SignedOut,
    SignUpCompleted,
)
from src.manito.auth.provider import (
    ChangeFeed,
    IdentityProvider,
    SignUpOutcome,
    Subscription,
    SupabaseChangeFeed,
    SupabaseIdentityProvider,
)
from src.manito.auth.reconciler import SessionReconciler
from src.manito.auth.resend import (
    ProvisioningRetryTracker,
    ResendController,
    ResendResult,
    RetryOutcome,
)
from src.manito.auth.state_machine import AuthStateMachine
from src.manito.auth.watcher import VerificationWatcher
from src.manito.config import Settings
from src.manito.services.profiles import (
    ProfileStore,
    ProvisioningCoordinator,
    ProvisioningResult,
    SupabaseProfileStore,
)
from src.manito.services.session_codes import RemoteSessionCodeResolver

logger = logging.getLogger(__name__)

FOREGROUND_STATE = "active"
BACKGROUND_STATES = ("background", "inactive")


class AuthRuntime:
    """
    Explicitly owned runtime for the auth core.

    Holds the provider auth-change subscription, the verification watcher and
    any background tasks. `start` is idempotent; `stop` releases everything it
    holds. All state changes go through the state machine's `dispatch`.

    Example:
        >>> runtime = build_runtime(settings, client)
        >>> await runtime.start(initial_url=launch_url)
        >>> await runtime.handle_link(url)
        >>> await runtime.stop()
    """

    def __init__(
        self,
        provider: IdentityProvider,
        store: ProfileStore,
        resolver: SessionCodeResolver,
        change_feed: ChangeFeed | None = None,
        max_provisioning_attempts: int = 3,
        poll_cooldown_seconds: float = 30,
        resend_cooldown_seconds: int = 60,
        clock=time.monotonic,
    ):
        self.provider = provider
        self.resolver = resolver
        self.machine = AuthStateMachine(max_provisioning_attempts=max_provisioning_attempts)
        self.coordinator = ProvisioningCoordinator(store)
        self.retries = ProvisioningRetryTracker()
        self.reconciler = SessionReconciler(self.machine, provider, self.coordinator, self.retries)
        self.router = CallbackRouter(self.machine, provider, resolver, self.reconciler)
        self.watcher = VerificationWatcher(
            self.machine,
            provider,
            self.reconciler,
            change_feed=change_feed,
            cooldown_seconds=poll_cooldown_seconds,
            clock=clock,
        )
        self.resend_controller = ResendController(
            provider, cooldown_seconds=resend_cooldown_seconds, clock=clock
        )

        self.started = False
        self._auth_subscription: Subscription | None = None
        self._unsubscribe_state = None
        self._app_state = FOREGROUND_STATE
        self._tasks: set[asyncio.Task] = set()
        self._initialized = asyncio.Event()

    @property
    def state(self) -> AuthState:
        return self.machine.state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, initial_url: str | None = None) -> AuthState:
        """Register listeners, restore the stored session and process the launch link."""
        if self.started:
            return self.state
        self.started = True

        logger.info("Initializing auth listeners")
        self._unsubscribe_state = self.machine.subscribe(self._on_state_change)
        self._auth_subscription = self.provider.on_auth_change(self._on_provider_event)

        await self.initialize()

        if initial_url:
            logger.info("Processing initial link")
            await self.router.handle(initial_url)
        return self.state

    async def stop(self) -> None:
        """Release the auth-change subscription, the watcher, pending tasks and the resolver."""
        if not self.started:
            return
        logger.info("Cleaning up auth listeners")

        if self._auth_subscription is not None:
            try:
                self._auth_subscription.unsubscribe()
            except Exception as e:
                logger.warning(f"Failed to unsubscribe auth listener: {e}")
            self._auth_subscription = None
        if self._unsubscribe_state is not None:
            self._unsubscribe_state()
            self._unsubscribe_state = None

        await self.watcher.unwatch()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        close = getattr(self.resolver, "close", None)
        if close is not None:
            try:
                await close()
            except Exception as e:
                logger.warning(f"Failed to close session code resolver: {e}")

        self._initialized.clear()
        self.started = False

    async def initialize(self) -> AuthState:
        """Restore the last-known session (anonymous -> initializing -> ...)."""
        try:
            return await self._initialize()
        finally:
            self._initialized.set()

    async def _initialize(self) -> AuthState:
        self.machine.dispatch(InitializeStarted())

        try:
            session = await self._restore_session()
        except SessionRestoreCorruptedError as e:
            logger.warning(f"Auth initialization error (clearing invalid session): {e}")
            self.coordinator.reset()
            self.machine.dispatch(SessionRestoreFailed())
            try:
                await self.provider.sign_out()
            except AuthCoreError as sign_out_error:
                logger.warning(f"Could not clear corrupted session: {sign_out_error}")
            return self.state
        except ResolutionFailedError as e:
            logger.warning(f"Session restore unavailable, starting anonymous: {e}")
            self.machine.dispatch(SessionRestoreFailed())
            return self.state

        if session is None:
            logger.info("No valid session found during initialization")
            self.machine.dispatch(NoSessionFound())
            return self.state

        result: ProvisioningResult | None = None
        if session.is_verified:
            result = await self.coordinator.ensure(
                session.user_id, context="session-restore", metadata=session.user_metadata
            )
        profile_exists = result is not None and result.success
        self.machine.dispatch(SessionRestored(session=session, profile_exists=profile_exists))

        if result is not None and not result.success:
            self.reconciler.record_result(result)
        return self.state

    async def _restore_session(self):
        try:
            return await self.provider.get_session()
        except InvalidCredentialError as e:
            raise SessionRestoreCorruptedError(str(e)) from e
        except ResolutionFailedError:
            raise
        except Exception as e:
            raise SessionRestoreCorruptedError(f"Unexpected restore failure: {e}") from e

    # ------------------------------------------------------------------
    # User-facing operations
    # ------------------------------------------------------------------

    async def handle_link(self, url: str) -> CallbackResult:
        """Route an inbound link once the stored session has been restored."""
        await self._wait_initialized()
        return await self.router.handle(url)

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> SignUpOutcome:
        """
        Create an account. With verification required, the state becomes
        awaiting_verification and the watcher starts.

        Raises:
            InvalidCredentialError: If the provider rejects the sign-up
            ResolutionFailedError: On transient provider failures
        """
        outcome = await self.provider.sign_up(email, password, metadata)
        logger.info(
            "Signup successful",
            extra={"requires_verification": outcome.requires_verification},
        )
        self.machine.dispatch(
            SignUpCompleted(user_id=outcome.user_id, email=outcome.email, session=outcome.session)
        )
        if outcome.session is not None and outcome.session.is_verified:
            await self.reconciler.provision(context="sign-up")
        return outcome

    async def sign_in(self, email: str, password: str) -> AuthState:
        """
        Raises:
            InvalidCredentialError: If the credentials are rejected
            ResolutionFailedError: On transient provider failures
        """
        session = await self.provider.sign_in_with_password(email, password)
        await self.reconciler.apply_session(session, source="sign-in")
        return self.state

    async def sign_out(self) -> AuthState:
        await self.reconciler.sign_out(reason="sign_out")
        return self.state

    async def resend_verification(self, email: str | None = None) -> ResendResult:
        return await self.resend_controller.resend(email or self.state.email)

    async def retry_provisioning(self) -> RetryOutcome:
        return await self.reconciler.retry_provisioning()

    async def check_verification_status(self) -> bool:
        return await self.watcher.check_now()

    async def on_app_state_change(self, next_state: str) -> ProvisioningResult | None:
        """Feed app lifecycle transitions; background/inactive -> active triggers the poll."""
        previous, self._app_state = self._app_state, next_state
        if next_state == FOREGROUND_STATE and previous in BACKGROUND_STATES:
            return await self.watcher.on_foreground()
        return None

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def _on_provider_event(self, event: ProviderEvent) -> None:
        self._spawn(self.handle_provider_event(event))

    async def handle_provider_event(self, event: ProviderEvent) -> None:
        """Apply an identity-provider auth change. Unrecognized events are no-ops."""
        await self._wait_initialized()
        try:
            if isinstance(event, (ProviderSignedIn, ProviderTokenRefreshed, ProviderUserUpdated)):
                await self.reconciler.apply_session(event.session, source=type(event).__name__)
            elif isinstance(event, ProviderSignedOut):
                if self.state.status is not AuthStatus.ANONYMOUS:
                    self.coordinator.reset()
                    self.retries.reset()
                    self.machine.dispatch(SignedOut(reason="provider_signed_out"))
            else:
                logger.debug(f"Ignoring provider event {event}")
        except AuthCoreError as e:
            logger.error(f"Auth state change handling error: {e}")

    def _on_state_change(self, previous: AuthState, current: AuthState, event: AuthEvent) -> None:
        if current.status is AuthStatus.AWAITING_VERIFICATION and current.user_id:
            if self.watcher.user_id != current.user_id:
                self._spawn(self.watcher.watch(current.user_id))
        elif current.status in (AuthStatus.READY, AuthStatus.ANONYMOUS):
            if self.watcher.user_id is not None:
                self._spawn(self.watcher.unwatch())

    async def _wait_initialized(self) -> None:
        # Session restore owns the state until it settles; later work queues behind it
        if self.started and not self._initialized.is_set():
            await self._initialized.wait()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("No running event loop; dropping auth background work")
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        """Wait for background work spawned by listeners to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def build_runtime(settings: Settings, client: AsyncClient) -> AuthRuntime:
    """Wire the auth core to Supabase and the companion session service."""
    provider = SupabaseIdentityProvider(client, redirect_url=settings.auth_redirect_url)
    change_feed = SupabaseChangeFeed(client) if settings.realtime_enabled else None
    resolver = RemoteSessionCodeResolver(
        settings.retrieve_session_url, timeout=settings.http_timeout_seconds
    )
    return AuthRuntime(
        provider=provider,
        store=SupabaseProfileStore(client),
        resolver=resolver,
        change_feed=change_feed,
        max_provisioning_attempts=settings.provisioning_max_attempts,
        poll_cooldown_seconds=settings.verification_poll_cooldown_seconds,
        resend_cooldown_seconds=settings.resend_cooldown_seconds,
    )
