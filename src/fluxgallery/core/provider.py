"""Generation provider capability and its Replicate implementation.

The orchestrator consumes generation as an opaque capability: given a model
identifier and a parameter mapping, a provider returns one locator (a URL) for
the generated content, or raises :class:`ProviderError`.

:class:`ReplicateProvider` talks to the Replicate predictions API over httpx:

- ``owner/name`` model ids are created through
  ``POST /models/{owner}/{name}/predictions``.
- ``owner/name:version`` ids are created through ``POST /predictions`` with
  the explicit version.
- The request asks Replicate to hold the connection open (``Prefer: wait``);
  if the prediction is still running afterwards, its ``urls.get`` endpoint is
  polled until it reaches a terminal status or ``provider_timeout`` elapses.

No retries are performed.  Retry and backoff policy belongs to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Protocol

import httpx

from .errors import ProviderError

logger = logging.getLogger(__name__)

_TERMINAL_STATUSES = {"succeeded", "failed", "canceled"}


class GenerationProvider(Protocol):
    """Capability contract consumed by the orchestrator."""

    async def invoke(self, model_id: str, parameters: dict[str, Any]) -> str:
        """Run a generation and return a locator for its output."""
        ...


def _error_detail(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or None


def _first_output(output: Any) -> str | None:
    """Normalize a prediction output to a single locator string."""
    if isinstance(output, list):
        output = output[0] if output else None
    if isinstance(output, str) and output:
        return output
    return None


class ReplicateProvider:
    """Replicate predictions API client.

    Args:
        api_token: Replicate API token.  ``None`` makes every call fail with
            a :class:`ProviderError` without touching the network.
        base_url: API base URL.
        timeout: Overall time budget for one :meth:`invoke`, polling included.
        poll_interval: Delay between status polls.
        transport: Optional httpx transport (used by tests).
    """

    def __init__(
        self,
        api_token: str | None,
        base_url: str = "https://api.replicate.com/v1",
        timeout: float = 120.0,
        poll_interval: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_token = api_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._transport = transport

    def _prediction_request(self, model_id: str, parameters: dict[str, Any]) -> tuple[str, dict]:
        if ":" in model_id:
            _, version = model_id.split(":", 1)
            return f"{self.base_url}/predictions", {"version": version, "input": parameters}
        return f"{self.base_url}/models/{model_id}/predictions", {"input": parameters}

    async def invoke(self, model_id: str, parameters: dict[str, Any]) -> str:
        """Create a prediction and wait for its output locator.

        Raises:
            ProviderError: On missing credentials, HTTP errors, failed or
                canceled predictions, timeouts, or empty output.
        """
        if not self.api_token:
            raise ProviderError(
                "Replicate API token is not configured",
                detail={"hasToken": False},
            )

        url, body = self._prediction_request(model_id, parameters)
        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Prefer": f"wait={min(int(self.timeout), 60)}",
        }
        deadline = time.monotonic() + self.timeout

        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self.timeout
            ) as client:
                response = await client.post(url, json=body, headers=headers)
                if response.is_error:
                    detail = _error_detail(response)
                    message = (
                        detail.get("detail") or detail.get("title")
                        if isinstance(detail, dict)
                        else None
                    )
                    raise ProviderError(
                        message or f"Replicate returned HTTP {response.status_code}",
                        detail=detail,
                    )
                prediction = response.json()

                while prediction.get("status") not in _TERMINAL_STATUSES:
                    poll_url = (prediction.get("urls") or {}).get("get")
                    if not poll_url:
                        raise ProviderError(
                            "Prediction did not complete and has no status URL",
                            detail=prediction,
                        )
                    if time.monotonic() >= deadline:
                        raise ProviderError(
                            f"Prediction timed out after {self.timeout:.0f}s",
                            detail=prediction,
                        )
                    await asyncio.sleep(self.poll_interval)
                    poll = await client.get(poll_url, headers=headers)
                    if poll.is_error:
                        raise ProviderError(
                            f"Replicate returned HTTP {poll.status_code} while polling",
                            detail=_error_detail(poll),
                        )
                    prediction = poll.json()
        except httpx.HTTPError as e:
            raise ProviderError(f"Replicate request failed: {e}") from e

        status = prediction.get("status")
        if status != "succeeded":
            raise ProviderError(
                prediction.get("error") or f"Prediction {status}",
                detail=prediction,
            )

        locator = _first_output(prediction.get("output"))
        if locator is None:
            raise ProviderError("Prediction returned no output", detail=prediction)

        logger.info(f"Prediction {prediction.get('id', '?')} succeeded for {model_id}")
        return locator
