"""Validate a deployment by probing an HTTP endpoint on the host."""

import logging
from dataclasses import dataclass, field

import httpx

from ..context import RunContext
from ..exceptions import ActionError, ContextCancelledError
from ..ssh import Connection
from ..types import RunConfig
from .base import Action, as_duration, as_int, as_str, decoder

logger = logging.getLogger(__name__)


def _http_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout, follow_redirects=True)


def as_retries(value: object) -> int:
    """Attempt count; zero or less still makes one attempt."""
    return max(as_int(value), 1)


def as_port(value: object) -> int:
    port = as_int(value)
    if not 0 <= port <= 65535:
        raise ValueError(f"expected a port between 0 and 65535, got {port}")
    return port


@dataclass(frozen=True)
class ValidateAction(Action):
    """GET ``<scheme>://<host>[:port]<url_path>`` until it answers as expected.

    Each attempt is bounded by ``timeout`` and abandoned as soon as the run
    context fires. The action succeeds on the first response carrying
    ``status_code`` whose body contains ``body_content``, and fails with the
    last error once ``retries`` attempts are used up.

    Attributes:
        scheme: URL scheme (http or https)
        port: Port to probe (0 uses the scheme default)
        url_path: Request path
        retries: Number of attempts (at least one is made)
        timeout: Per-attempt timeout in seconds
        status_code: Expected HTTP status
        body_content: Substring the response body must contain
    """

    kind = "validate"

    scheme: str = field(default="http", metadata=decoder(as_str))
    port: int = field(default=0, metadata=decoder(as_port))
    url_path: str = field(default="/", metadata=decoder(as_str))
    retries: int = field(default=1, metadata=decoder(as_retries))
    timeout: float = field(default=10.0, metadata=decoder(as_duration))
    status_code: int = field(default=200, metadata=decoder(as_int))
    body_content: str = field(default="", metadata=decoder(as_str))

    def url(self, host: str) -> str:
        """URL probed on ``host``."""
        if ":" in host and not host.startswith("["):
            host = f"[{host}]"
        if self.port:
            host = f"{host}:{self.port}"
        path = self.url_path if self.url_path.startswith("/") else f"/{self.url_path}"
        return f"{self.scheme}://{host}{path}"

    async def _probe(self, url: str) -> None:
        try:
            async with _http_client(self.timeout) as client:
                response = await client.get(url)
        except httpx.TimeoutException as e:
            raise ActionError(f"request timed out after {self.timeout}s", url=url) from e
        except httpx.HTTPError as e:
            raise ActionError(f"failed to execute request: {e}", url=url) from e

        if response.status_code != self.status_code:
            raise ActionError(
                f"expected status code {self.status_code} but got {response.status_code} instead",
                url=url,
                status=response.status_code,
            )
        if self.body_content and self.body_content not in response.text:
            raise ActionError(
                f"response body does not contain {self.body_content!r}",
                url=url,
                status=response.status_code,
            )

    async def run(self, ctx: RunContext, conn: Connection, config: RunConfig) -> None:
        url = self.url(conn.host)
        attempts = max(self.retries, 1)
        last_error: ActionError | None = None

        for attempt in range(1, attempts + 1):
            try:
                await ctx.guard(self._probe(url))
            except ContextCancelledError as e:
                raise ActionError(f"failed to validate {url}: {e}", url=url) from e
            except ActionError as e:
                last_error = e
                logger.debug(f"Validation attempt {attempt}/{attempts} of {url} failed: {e}")
                continue
            logger.debug(f"Validated {url} on attempt {attempt}")
            return

        raise ActionError(
            f"failed to validate {url} after {attempts} attempt(s): {last_error}",
            url=url,
        ) from last_error
