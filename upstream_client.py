import json
import threading
import time

import requests
from urllib3.exceptions import ReadTimeoutError

RETRY_STATUS_CODES = (429, 500, 502, 503, 504)
CHUNK_SIZE = 8192


class UpstreamError(Exception):
    """An upstream call that failed for good (after any retries)."""

    def __init__(self, message, status=None, data=None):
        super().__init__(message)
        self.status = status
        self.data = data


def _response_data(response, body):
    """Parsed JSON body if possible, otherwise the raw text."""
    try:
        return json.loads(body)
    except ValueError:
        return body.decode(response.encoding or "utf-8", errors="replace")


class UpstreamClient:
    MAX_RETRIES = 3
    TIMEOUT = 30  # seconds, per attempt, connect through last body byte
    BASE_DELAY = 0.1  # seconds

    def __init__(
        self,
        api_url,
        logger,
        session=None,
        timeout=TIMEOUT,
        max_retries=MAX_RETRIES,
        base_delay=BASE_DELAY,
    ):
        self.api_url = api_url
        self.logger = logger
        self.session = session
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._local = threading.local()

    def _get_session(self):
        """The injected session, or one requests.Session per serving thread."""
        if self.session is not None:
            return self.session
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._local.session = requests.Session()
        return session

    def retry_delay(self, retry_number):
        """Exponential backoff: retry 1 waits 2 * base, retry 2 waits 4 * base..."""
        return self.base_delay * (2**retry_number)

    def _is_retryable(self, error):
        if isinstance(error, requests.exceptions.Timeout):
            return True
        if isinstance(error, requests.exceptions.ConnectionError):
            # requests reports a read timeout hit while streaming the body this way
            return bool(error.args) and isinstance(
                error.args[0], (ReadTimeoutError, TimeoutError)
            )
        if isinstance(error, requests.exceptions.HTTPError):
            return (
                error.response is not None
                and error.response.status_code in RETRY_STATUS_CODES
            )
        return False

    def _post_once(self, payload, headers):
        """
        One attempt. Returns (response, body bytes); raises ReadTimeout when the
        whole exchange takes longer than self.timeout.
        """
        deadline = time.monotonic() + self.timeout
        response = self._get_session().post(
            self.api_url,
            json=payload,
            headers=headers,
            timeout=self.timeout,
            stream=True,
        )
        chunks = []
        with response:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if time.monotonic() > deadline:
                    raise requests.exceptions.ReadTimeout(
                        f"Read timed out. (total timeout={self.timeout}s)"
                    )
                chunks.append(chunk)
        return response, b"".join(chunks)

    def post_json(self, payload, headers):
        """
        POSTs payload to the upstream endpoint and returns the parsed JSON body.
        Timeouts and 429/5xx responses are retried with exponential backoff;
        anything else fails immediately. Raises UpstreamError on failure.
        """
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            self.logger.info(
                f"Upstream call attempt {attempt + 1}/{attempts} to '{self.api_url}'"
            )
            try:
                response, body = self._post_once(payload, headers)
                response.raise_for_status()
            except requests.exceptions.RequestException as e:
                if self._is_retryable(e) and attempt < self.max_retries:
                    delay = self.retry_delay(attempt + 1)
                    self.logger.warning(
                        f"Transient upstream failure on attempt {attempt + 1}: {e}. "
                        f"Retrying in {delay:.2f}s."
                    )
                    time.sleep(delay)
                    continue

                if isinstance(e, requests.exceptions.HTTPError):
                    raise UpstreamError(
                        str(e),
                        status=e.response.status_code,
                        data=_response_data(e.response, body),
                    ) from e
                raise UpstreamError(str(e)) from e

            try:
                return json.loads(body)
            except ValueError as e:
                raise UpstreamError(
                    f"Upstream returned a non-JSON body: {e}",
                    status=response.status_code,
                    data=_response_data(response, body),
                ) from e
