"""HTTP client for the remote chat session service."""

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..config.settings import ServiceSettings
from ..errors import (
    ChatServiceError,
    InitializationFailedError,
    ProtocolDriftError,
    RetryableServiceError,
    SessionExpiredError,
    TransportError,
)
from ..models import SessionOffsets
from ..protocol import InfoResponse, parse_info, parse_init
from .storage import SessionStorage

logger = logging.getLogger(__name__)


def _is_transient(error: BaseException) -> bool:
    """Network failures and 5xx responses; malformed bodies are not retried."""
    if not isinstance(error, ChatServiceError) or isinstance(error, ProtocolDriftError):
        return False
    return error.is_retryable


# Retry configuration for session creation. Sends are never retried and
# polling has its own failure limit.
_init_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    retry=retry_if_exception(_is_transient),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


class SessionClient:
    """Client for one remote chat session.

    Owns the session id and fetch offsets, and provides:
    - Session creation (init), with the id persisted to storage
    - Sending user messages
    - Fetching history, fully or incrementally from the current offsets

    ``init_session`` and ``fetch_info`` are single-flight: concurrent callers
    await the same in-flight request.
    """

    def __init__(self, config: ServiceSettings, storage: Optional[SessionStorage] = None):
        self.config = config
        self.storage = storage
        self._client: Optional[httpx.AsyncClient] = None
        self._session_id: Optional[str] = None
        self._offsets: Optional[SessionOffsets] = None
        self._last_requested_offsets: Optional[SessionOffsets] = None
        self._poll_failure_count = 0
        self._init_task: Optional[asyncio.Task] = None
        self._info_task: Optional[asyncio.Task] = None
        self.last_error: Optional[ChatServiceError] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.endpoint or "",
                headers={"Accept": "application/json"},
                timeout=self.config.timeout_seconds,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # =========================================================================
    # State
    # =========================================================================

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def offsets(self) -> Optional[SessionOffsets]:
        return self._offsets

    @offsets.setter
    def offsets(self, value: Optional[SessionOffsets]) -> None:
        self._offsets = value

    @property
    def last_requested_offsets(self) -> Optional[SessionOffsets]:
        """Offsets used by the most recent info request (None for a full refresh)."""
        return self._last_requested_offsets

    @property
    def poll_failure_count(self) -> int:
        return self._poll_failure_count

    def load_persisted_session(self) -> Optional[str]:
        """Restore a session id saved by an earlier run."""
        if self.storage is None or not self.is_configured:
            return None
        try:
            session_id = self.storage.get(self.config.storage_key)
        except Exception as e:
            logger.warning(f"Failed to read chat session id from storage: {e}")
            return None
        if session_id:
            self._session_id = session_id
            self._offsets = None
            logger.info(f"Restored chat session {session_id}")
        return session_id

    def _persist_session_id(self, session_id: Optional[str]) -> None:
        if self.storage is None:
            return
        try:
            if session_id:
                self.storage.set(self.config.storage_key, session_id)
            else:
                self.storage.remove(self.config.storage_key)
        except Exception as e:
            logger.warning(f"Failed to persist chat session id: {e}")

    def clear_session(self) -> None:
        """Forget the current session, locally and in storage."""
        if self._session_id:
            logger.info(f"Clearing chat session {self._session_id}")
        self._session_id = None
        self._offsets = None
        self._last_requested_offsets = None
        self._poll_failure_count = 0
        self._persist_session_id(None)

    # =========================================================================
    # Session init
    # =========================================================================

    async def init_session(self) -> bool:
        """Create a new remote session.

        Returns:
            True if a session id was obtained, False otherwise. On failure all
            session state is cleared.
        """
        if not self.is_configured:
            return False
        if self._init_task is not None and not self._init_task.done():
            return await asyncio.shield(self._init_task)

        task = asyncio.ensure_future(self._init_session())
        self._init_task = task
        task.add_done_callback(self._clear_init_task)
        return await asyncio.shield(task)

    def _clear_init_task(self, task: asyncio.Task) -> None:
        if self._init_task is task:
            self._init_task = None

    async def _init_session(self) -> bool:
        body: Dict[str, Any] = {}
        if self.config.preset:
            body["preset"] = self.config.preset
        if self.config.title:
            body["title"] = self.config.title

        try:
            payload = await self._post_init(body)
            response = parse_init(payload)
            if not response.id:
                raise InitializationFailedError("Missing chat id in init response", payload=payload)
        except ChatServiceError as e:
            logger.error(f"Failed to initialize chat session: {e}")
            self.last_error = e
            self.clear_session()
            return False

        self._session_id = response.id
        self._offsets = SessionOffsets()
        self._last_requested_offsets = None
        self._poll_failure_count = 0
        self._persist_session_id(response.id)
        logger.info(f"Initialized chat session {response.id}")
        return True

    @_init_retry
    async def _post_init(self, body: Dict[str, Any]) -> Any:
        return await self._request_json("POST", "/init", json=body)

    # =========================================================================
    # Chat
    # =========================================================================

    async def send_message(self, text: str) -> None:
        """Send a user message to the current session.

        Raises:
            InitializationFailedError: If there is no session
            SessionExpiredError: If the session no longer exists (404)
            ChatServiceError: For any other failure, with ``status_code`` set
        """
        if not self.is_configured or not self._session_id:
            raise InitializationFailedError("Chat not initialized")

        body: Dict[str, Any] = {
            "id": self._session_id,
            "input": {"text": text},
            "stream": True,
        }
        if self.config.preset:
            body["preset"] = self.config.preset

        await self._request_json("POST", "/chat", json=body)

    # =========================================================================
    # Info
    # =========================================================================

    async def fetch_info(self, full_refresh: bool = False) -> Optional[InfoResponse]:
        """Fetch conversation history.

        Args:
            full_refresh: Ignore offsets and fetch the complete history

        Returns:
            The validated response, or None without a session or on failure.
            On 404 the session is cleared; other failures increment
            ``poll_failure_count``.
        """
        if not self.is_configured or not self._session_id:
            return None
        if self._info_task is not None and not self._info_task.done():
            return await asyncio.shield(self._info_task)

        if full_refresh:
            self._last_requested_offsets = None
        else:
            self._last_requested_offsets = self._offsets or SessionOffsets()

        path, params = self._info_request(full_refresh)
        task = asyncio.ensure_future(self._fetch_info(path, params))
        self._info_task = task
        task.add_done_callback(self._clear_info_task)
        return await asyncio.shield(task)

    def _clear_info_task(self, task: asyncio.Task) -> None:
        if self._info_task is task:
            self._info_task = None

    def _info_request(self, full_refresh: bool) -> Tuple[str, Optional[Dict[str, str]]]:
        path = f"/info/{quote(self._session_id or '', safe='')}"
        if full_refresh or self._offsets is None:
            return path, None
        return path, self._offsets.as_params()

    async def _fetch_info(self, path: str, params: Optional[Dict[str, str]]) -> Optional[InfoResponse]:
        try:
            if params is None:
                payload = await self._request_json("GET", path)
            else:
                payload = await self._request_json("GET", path, params=params)
            info = parse_info(payload)
        except SessionExpiredError as e:
            logger.warning(f"Chat session expired: {e}")
            self.last_error = e
            self.clear_session()
            return None
        except ChatServiceError as e:
            self._poll_failure_count += 1
            self.last_error = e
            logger.error(
                f"Failed to fetch chat information (failure {self._poll_failure_count}): {e}"
            )
            return None

        self._poll_failure_count = 0
        self.last_error = None
        return info

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _request_json(self, method: str, path: str, **kwargs) -> Any:
        """Perform a request and decode the JSON body.

        Returns None when the body is not JSON; callers that need a body
        reject that as drift.
        """
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            raise TransportError(f"Chat service request failed: {e}") from e

        self._check_response(response)
        try:
            return response.json()
        except ValueError:
            return None

    def _check_response(self, response: httpx.Response):
        """Check response for errors and raise the matching error type.

        Raises SessionExpiredError for 404.
        Raises RetryableServiceError for 5xx errors (server errors).
        Raises ChatServiceError for other 4xx errors (client errors).
        """
        status = response.status_code
        if status < 400:
            return

        try:
            payload = response.json()
        except Exception:
            payload = response.text
        detail = payload.get("detail", payload) if isinstance(payload, dict) else payload

        if status == 404:
            raise SessionExpiredError(f"Chat session not found: {detail}", payload=payload)
        if status >= 500:
            raise RetryableServiceError(
                f"Chat service request failed with status {status}: {detail}", status, payload
            )
        raise ChatServiceError(
            f"Chat service request failed with status {status}: {detail}", status, payload
        )
