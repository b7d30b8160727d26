"""
Token Manager for the Market Appliance client.

This module keeps the appliance token pair fresh. It owns the in-memory pair,
runs the background refresh loop, and decorates outgoing requests with the
current access token.
"""

import asyncio
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from shared.exceptions import MarketAuthError, TokenValidationError, handle_exception
from shared.interfaces import IAuthorityClient, ITokenStorage
from shared.logging_config import log_structured_error, mask_token
from shared.models import TokenPair, utcnow

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = timedelta(minutes=10)
DEFAULT_REFRESH_THRESHOLD = timedelta(minutes=30)


class TokenManager:
    """
    Manages the appliance token pair with periodic refresh.

    One instance is built per process and handed to every consumer. The
    refresh loop is started and stopped explicitly.
    """

    def __init__(
        self,
        storage: ITokenStorage,
        api_client: IAuthorityClient,
        poll_interval: timedelta = DEFAULT_POLL_INTERVAL,
        refresh_threshold: timedelta = DEFAULT_REFRESH_THRESHOLD,
        clock: Callable[[], datetime] = utcnow
    ):
        self.storage = storage
        self.api_client = api_client
        self.poll_interval = poll_interval
        self.refresh_threshold = refresh_threshold
        self._clock = clock

        # Guards the reference to the current pair; never held across I/O.
        self._lock = threading.Lock()
        # Serializes writers so disk and memory are updated in the same order.
        self._update_lock = threading.Lock()
        self._tokens = storage.load()

        self._token_refresh_callbacks: List[Callable[[TokenPair], None]] = []

        self._refresh_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        if refresh_threshold <= poll_interval:
            logger.warning(
                f"Refresh threshold ({refresh_threshold}) is not longer than the poll interval "
                f"({poll_interval}); tokens may expire between two polls"
            )

        logger.info("Token manager initialized")

    def add_token_refresh_callback(self, callback: Callable[[TokenPair], None]) -> None:
        """
        Add callback for token refresh events.

        Args:
            callback: Function called with the newly published pair
        """
        self._token_refresh_callbacks.append(callback)

    def _notify_token_refresh(self, tokens: TokenPair) -> None:
        for callback in self._token_refresh_callbacks:
            try:
                callback(tokens)
            except Exception as e:
                logger.error(f"Error in token refresh callback: {e}")

    def current_tokens(self) -> TokenPair:
        """Return the current pair; always a whole pair, never a mix."""
        with self._lock:
            return self._tokens

    def access_token(self) -> str:
        with self._lock:
            return self._tokens.access

    def auth_headers(self) -> Dict[str, str]:
        """Get authentication headers for an outgoing request."""
        return {'Authorization': f'Bearer {self.access_token()}'}

    def attach(self, request: Any) -> Any:
        """
        Decorate an outgoing request with the current bearer token.

        Accepts either a mutable header mapping or an object with a
        ``headers`` mapping. Only reads in-memory state.

        Returns:
            The same request object
        """
        headers = getattr(request, 'headers', request)
        headers['Authorization'] = f'Bearer {self.access_token()}'
        return request

    def needs_refresh(self, tokens: Optional[TokenPair] = None) -> bool:
        """True when the pair is within the refresh threshold of expiry."""
        tokens = tokens or self.current_tokens()
        return tokens.time_until_expiry(self._clock()) <= self.refresh_threshold

    def _store_tokens(self, tokens: TokenPair) -> None:
        """Persist then publish; runs in a worker thread, serialized against other writers."""
        with self._update_lock:
            self.storage.persist(tokens)
            with self._lock:
                self._tokens = tokens

    async def register(self, otp: str) -> TokenPair:
        """
        Register this worker with the Market and store the issued pair.

        Called from the short-lived CLI command; failures propagate.

        Args:
            otp: One-time code issued by the Market

        Returns:
            The stored token pair
        """
        tokens = await self.api_client.register(otp)
        await asyncio.to_thread(self._store_tokens, tokens)

        logger.info(f"Registered as market appliance; tokens expire at {tokens.expires_at.isoformat()}")
        return tokens

    async def refresh_tokens(self) -> TokenPair:
        """
        Exchange the current refresh token for a new pair and store it.

        Raises:
            MarketAuthError: If the call or the write fails; state is unchanged
        """
        current = self.current_tokens()
        logger.info("Refreshing appliance tokens")

        tokens = await self.api_client.refresh(current.refresh)
        await asyncio.to_thread(self._store_tokens, tokens)

        logger.info(f"Token refresh successful; new tokens expire at {tokens.expires_at.isoformat()}")
        self._notify_token_refresh(tokens)
        return tokens

    async def check_once(self) -> bool:
        """
        Run a single refresh check.

        Refreshes when the current pair is within the threshold, then verifies
        the access token as a health signal. Errors are logged, never raised.

        Returns:
            True if the pair was refreshed
        """
        refreshed = False
        if self.needs_refresh():
            try:
                await self.refresh_tokens()
                refreshed = True
            except MarketAuthError as e:
                logger.warning(f"Got an error when refreshing tokens: {e}", extra={"error_info": e})
                # try again on next poll
                return False

        access = self.access_token()
        try:
            await self.api_client.verify(access)
        except TokenValidationError as e:
            # TODO: force a refresh when verify rejects a token that is still
            # outside the refresh threshold; today only the ttl triggers one.
            logger.warning(f"Got an error when validating access token {mask_token(access)}: {e}")
        except MarketAuthError as e:
            logger.warning(f"Could not reach market to validate access token: {e}")

        return refreshed

    async def _refresh_loop(self) -> None:
        """Automatic token refresh loop."""
        stop_event = self._stop_event
        interval = self.poll_interval.total_seconds()

        while True:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

            if stop_event.is_set():
                break

            logger.debug("Token refresh check")
            try:
                await self.check_once()
            except Exception as e:
                error = handle_exception(e, context={'poll_interval': str(self.poll_interval)})
                log_structured_error(logger, error, operation="refresh_check")

        logger.info("Token refresh loop stopped")

    def start(self) -> asyncio.Task:
        """
        Start the background refresh loop on the running event loop.

        Returns:
            The loop task; starting twice returns the running task
        """
        if self._refresh_task and not self._refresh_task.done():
            return self._refresh_task

        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._refresh_task = asyncio.create_task(self._refresh_loop())

        logger.info(f"Token refresh loop started (poll every {self.poll_interval}, "
                    f"threshold {self.refresh_threshold})")
        return self._refresh_task

    def is_running(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    def request_stop(self) -> None:
        """
        Signal the refresh loop to stop after its current check.

        Safe to call from any thread and more than once.
        """
        if self._stop_event is None or self._loop is None or self._loop.is_closed():
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._stop_event.set()
        else:
            self._loop.call_soon_threadsafe(self._stop_event.set)

    async def stop(self) -> None:
        """Stop the refresh loop and wait for an in-flight check to finish."""
        task = self._refresh_task
        if task is None:
            return

        self.request_stop()
        await task
        self._refresh_task = None

    async def shutdown(self) -> None:
        """Stop the refresh loop and close the authority client."""
        logger.info("Shutting down token manager")
        await self.stop()
        await self.api_client.close()
