"""Client-side agent that keeps a cookie session alive.

Runs on a single asyncio event loop. The only suspension points are HTTP
calls and timer sleeps, so state changes between them are atomic from the
agent's point of view.
"""
import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import inspect
import logging

import httpx

logger = logging.getLogger(__name__)

SESSION_PATH = "/api/auth/session"
REFRESH_PATH = "/api/user/token/refresh"
SIGN_IN_PATH = "/api/user/sign-in"
SIGN_OUT_PATH = "/api/user/sign-out"

POLL_INTERVAL_SECONDS = 5 * 60
REFRESH_BUFFER_SECONDS = 10


@dataclass
class SessionState:
    is_authenticated: bool = False
    is_loading: bool = False
    expires_in: int | None = None
    csrf_token: str | None = None


class SessionRenewalAgent:
    """
    Polls the session endpoint, refreshes tokens before they expire, and
    retries a request once after a 401.

    Example:
        async with SessionRenewalAgent("https://auth.example.com") as agent:
            await agent.sign_in("a@example.com", "secret")
            response = await agent.fetch_with_auth("GET", "/api/user/profile")
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        client: httpx.AsyncClient | None = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        refresh_buffer: float = REFRESH_BUFFER_SECONDS,
        timeout: float = 10.0,
        csrf_header_name: str = "x-csrf-token",
        on_unauthenticated: Callable[[], Awaitable[None] | None] | None = None,
    ):
        """
        Args:
            base_url: Base URL of the auth service
            client: Pre-configured httpx client (its base URL and timeout win)
            poll_interval: Seconds between periodic session checks
            refresh_buffer: Seconds before access-token expiry to refresh
            timeout: Request timeout in seconds for the owned client
            csrf_header_name: Header used to echo the CSRF token
            on_unauthenticated: Called when the session is lost, e.g. to
                redirect to the sign-in page
        """
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)
        self._owns_client = client is None
        self.poll_interval = poll_interval
        self.refresh_buffer = refresh_buffer
        self.csrf_header_name = csrf_header_name
        self.on_unauthenticated = on_unauthenticated

        self.state = SessionState()
        self._pending_refresh: asyncio.Task | None = None
        self._poll_task: asyncio.Task | None = None
        self._refresh_timer: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._closed = False

    async def __aenter__(self) -> "SessionRenewalAgent":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> bool:
        """Check the session now and begin periodic polling."""
        self._ensure_polling()
        return await self.check_session()

    async def sign_in(self, email: str, password: str) -> bool:
        try:
            response = await self._client.post(SIGN_IN_PATH, json={"email": email, "password": password})
            if self._closed:
                return False
            if response.status_code != 200:
                logger.info(f"Sign-in failed with status {response.status_code}")
                return False
            self.state.csrf_token = response.json().get("csrf_token")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Sign-in request failed: {e}")
            return False

        self.state.is_authenticated = True
        self._ensure_polling()
        return await self.check_session()

    async def sign_out(self) -> bool:
        """Sign out on the server and stop all timers.

        Local state is cleared even if the request fails; the server clears
        the cookies in either case.
        """
        try:
            response = await self._client.post(SIGN_OUT_PATH)
            succeeded = response.is_success
        except httpx.HTTPError as e:
            logger.warning(f"Sign-out request failed: {e}")
            succeeded = False

        self._mark_unauthenticated()
        await self._notify_unauthenticated()
        return succeeded

    async def check_session(self) -> bool:
        """Validate the session, refreshing once if the server answers 401."""
        self.state.is_loading = True
        try:
            response = await self._client.get(SESSION_PATH)
            if self._closed:
                return False
            if self._record_session(response):
                return True

            if response.status_code == 401:
                # Access token expired or missing; one refresh attempt only
                refreshed = await self.refresh()
                if self._closed:
                    return False
                if refreshed:
                    # Learn the new expiry and re-arm the timer
                    response = await self._client.get(SESSION_PATH)
                    if self._closed:
                        return False
                    self._record_session(response)
                    return True

            self._mark_unauthenticated()
            return False
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Session check failed: {e}")
            if not self._closed:
                self._mark_unauthenticated()
            return False
        finally:
            self.state.is_loading = False

    def _record_session(self, response: httpx.Response) -> bool:
        if response.status_code != 200:
            return False
        data = response.json()
        if not data.get("valid"):
            return False
        self.state.is_authenticated = True
        self.state.expires_in = data.get("expires_in")
        if self.state.expires_in is not None:
            self._schedule_refresh(self.state.expires_in)
        return True

    async def refresh(self) -> bool:
        """Refresh the tokens with at most one request in flight.

        Callers arriving while a refresh is pending await the same task and
        observe the same result.
        """
        if self._pending_refresh is None:
            self._pending_refresh = asyncio.ensure_future(self._refresh_once())
        # Shielded so one cancelled caller does not abort the shared refresh
        return await asyncio.shield(self._pending_refresh)

    async def _refresh_once(self) -> bool:
        try:
            response = await self._client.post(REFRESH_PATH)
            if self._closed:
                return False
            if response.status_code == 200:
                self.state.csrf_token = response.json().get("csrf_token")
                self.state.is_authenticated = True
                return True
            logger.info(f"Token refresh rejected with status {response.status_code}")
            self._mark_unauthenticated()
            return False
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Token refresh failed: {e}")
            if not self._closed:
                self._mark_unauthenticated()
            return False
        finally:
            self._pending_refresh = None

    async def fetch_with_auth(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a request; on 401 refresh and retry exactly once."""
        response = await self._send(method, url, **kwargs)
        if response.status_code != 401:
            return response

        refreshed = await self.refresh()
        if self._closed:
            return response
        if refreshed:
            return await self._send(method, url, **kwargs)

        # Refresh failed, the session is gone
        self._mark_unauthenticated()
        await self._notify_unauthenticated()
        return response

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = httpx.Headers(kwargs.pop("headers", None))
        if self.state.csrf_token:
            headers[self.csrf_header_name] = self.state.csrf_token
        return await self._client.request(method, url, headers=headers, **kwargs)

    def notify_visible(self) -> asyncio.Task | None:
        """Hook for the host UI: the page became visible again."""
        return self._spawn_check()

    def notify_focus(self) -> asyncio.Task | None:
        """Hook for the host UI: the window regained focus."""
        return self._spawn_check()

    def _spawn_check(self) -> asyncio.Task | None:
        return self._spawn(self.check_session())

    def _spawn(self, coro) -> asyncio.Task | None:
        if self._closed:
            coro.close()
            return None
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _ensure_polling(self) -> None:
        if self._closed:
            return
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.ensure_future(self._poll())

    async def _poll(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.poll_interval)
            await self.check_session()
            if not self.state.is_authenticated:
                break

    def _schedule_refresh(self, seconds_remaining: float) -> None:
        """Arm a one-shot timer firing ``refresh_buffer`` seconds before expiry."""
        self._cancel(self._refresh_timer)
        delay = max(seconds_remaining - self.refresh_buffer, 0)
        self._refresh_timer = asyncio.ensure_future(self._proactive_refresh(delay))

    async def _proactive_refresh(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Hand off so clearing timers during the refresh cannot interrupt it
        self._spawn(self._renew())

    async def _renew(self) -> None:
        refreshed = await self.refresh()
        if self._closed:
            return
        if refreshed:
            # Learn the new expiry and re-arm the timer
            await self.check_session()
            return
        self._mark_unauthenticated()
        await self._notify_unauthenticated()

    def _mark_unauthenticated(self) -> None:
        self.state.is_authenticated = False
        self.state.expires_in = None
        self.state.csrf_token = None
        self._cancel_timers()

    def _cancel_timers(self) -> None:
        self._cancel(self._refresh_timer)
        self._cancel(self._poll_task)
        self._refresh_timer = None
        self._poll_task = None

    @staticmethod
    def _cancel(task: asyncio.Task | None) -> None:
        # A timer that is itself running the transition must finish its own work
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _notify_unauthenticated(self) -> None:
        if self._closed or self.on_unauthenticated is None:
            return
        result = self.on_unauthenticated()
        if inspect.isawaitable(result):
            await result

    async def aclose(self) -> None:
        """Tear down: cancel every timer and discard in-flight results."""
        if self._closed:
            return
        self._closed = True
        self._cancel_timers()
        for task in list(self._background):
            self._cancel(task)
        if self._owns_client:
            await self._client.aclose()
