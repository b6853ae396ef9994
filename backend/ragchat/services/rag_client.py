"""
Client for the external RAG answering service.

Builds and validates the request payload, performs a single POST with a hard
timeout, and classifies every failure as a ``RagClientError``.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import httpx

from ragchat.config import Settings

logger = logging.getLogger(__name__)

MIN_TOP_K = 1
MAX_TOP_K = 20


class RagClientError(Exception):
    """A RAG request that was invalid or did not produce a usable answer."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details

    @property
    def is_client_error(self) -> bool:
        """The provider rejected the request itself (caller fault)."""
        return self.status in (400, 422)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "status": self.status, "details": self.details}


@dataclass
class RagResult:
    answer: str
    sources: List[Any]
    evaluation: Any
    latency_ms: int
    raw: Dict[str, Any]
    request: Dict[str, Any] = field(default_factory=dict)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class RagClient:
    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout_ms: int = 60000,
        default_top_k: int = 5,
        default_evaluate: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout_ms = timeout_ms if timeout_ms and timeout_ms > 0 else 60000
        self.default_top_k = min(max(int(default_top_k), MIN_TOP_K), MAX_TOP_K)
        self.default_evaluate = default_evaluate
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "RagClient":
        url = (settings.RAG_API_URL or "").strip()
        if not url:
            base = settings.RAG_BASE_URL.strip()
            if not base.endswith("/"):
                base = f"{base}/"
            url = urljoin(base, settings.RAG_QUERY_PATH.strip().lstrip("/"))
        return cls(
            url=url,
            api_key=(settings.RAG_API_KEY or "").strip() or None,
            timeout_ms=settings.RAG_TIMEOUT_MS,
            default_top_k=settings.RAG_DEFAULT_TOP_K,
            default_evaluate=settings.RAG_DEFAULT_EVALUATE,
        )

    def build_payload(
        self, question: Any, k: Any = None, evaluate: Any = None
    ) -> Dict[str, Any]:
        """Validate the question parameters; raises RagClientError on bad input."""
        if not isinstance(question, str) or not question.strip():
            raise RagClientError("Question is required")

        if k is None:
            k = self.default_top_k
        elif _is_number(k) and float(k).is_integer():
            k = int(k)
        else:
            raise RagClientError("k must be an integer between 1 and 20")
        if k < MIN_TOP_K or k > MAX_TOP_K:
            raise RagClientError("k must be an integer between 1 and 20")

        if evaluate is None:
            evaluate = self.default_evaluate
        elif not isinstance(evaluate, bool):
            raise RagClientError("evaluate must be a boolean")

        return {"question": question.strip(), "k": k, "evaluate": evaluate}

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def query(self, payload: Dict[str, Any]) -> RagResult:
        """POST a validated payload. Every failure surfaces as RagClientError."""
        seconds = self.timeout_ms / 1000.0
        logger.debug(f"RAG query k={payload.get('k')} evaluate={payload.get('evaluate')}")
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(seconds), transport=self.transport
            ) as client:
                # httpx timeouts are per phase; this bounds the whole call
                response = await asyncio.wait_for(
                    client.post(self.url, json=payload, headers=self._headers()), seconds
                )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise RagClientError("Timed out waiting for the RAG service") from e
        except httpx.HTTPError as e:
            raise RagClientError("Could not reach the RAG service") from e

        measured_ms = int(round((time.perf_counter() - started) * 1000))
        text = response.text

        try:
            data = json.loads(text) if text else None
        except ValueError as e:
            raise RagClientError(
                "Invalid JSON response from the RAG service",
                status=response.status_code,
                details=text,
            ) from e

        if not response.is_success:
            raise RagClientError(
                "RAG service returned an error",
                status=response.status_code,
                details=data if data is not None else text,
            )

        answer = data.get("answer") if isinstance(data, dict) else None
        answer = answer.strip() if isinstance(answer, str) else None
        if not answer:
            raise RagClientError(
                "RAG service did not return a valid answer",
                status=response.status_code,
                details=data,
            )

        sources = data.get("sources")
        evaluation = data.get("eval")
        if evaluation is None:
            evaluation = data.get("evaluation")
        latency = data.get("latency_ms")

        return RagResult(
            answer=answer,
            sources=sources if isinstance(sources, list) else [],
            evaluation=evaluation,
            latency_ms=max(0, int(round(latency))) if _is_number(latency) else measured_ms,
            raw=data,
            request=payload,
        )
