from __future__ import annotations

import logging
from typing import Any

import httpx

from assessment.envelope import stringify_envelope
from assessment.signature import DEFAULT_PREFIX, generate_signature, verify_signature

logger = logging.getLogger(__name__)

COORDINATOR_SERVICE_NAME = "coordinator"


class CoordinatorError(Exception):
    """Coordinator call did not produce a usable body. ``reason`` ends up in the fallback log."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class CoordinatorClient:
    def __init__(
        self,
        base_url: str | None,
        service_name: str,
        private_key: str | None = None,
        coordinator_public_key: str | None = None,
        signature_prefix: str = DEFAULT_PREFIX,
        timeout: float = 6.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.service_name = service_name
        self.private_key = private_key
        self.coordinator_public_key = coordinator_public_key
        self.signature_prefix = signature_prefix
        self.timeout = timeout
        self.transport = transport

        if not self.base_url:
            logger.warning("COORDINATOR_URL is not set. Integrations will run on mock responses.")

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    @property
    def url(self) -> str:
        return f"{self.base_url}/api/fill-content-metrics/"

    def sign_headers(self, envelope: dict[str, Any]) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if not self.private_key:
            logger.warning("PRIVATE_KEY is not set. Sending unsigned envelope to coordinator.")
            return headers
        try:
            signature = generate_signature(self.service_name, self.private_key, envelope, self.signature_prefix)
        except ValueError as exc:
            logger.warning(f"Failed to sign coordinator envelope: {exc}")
            return headers
        headers["X-Service-Name"] = self.service_name
        headers["X-Signature"] = signature
        return headers

    def _check_response_signature(self, resp: httpx.Response, data: Any) -> None:
        name = resp.headers.get("x-service-name")
        sig = resp.headers.get("x-service-signature") or resp.headers.get("x-signature")
        if not (self.coordinator_public_key and name == COORDINATOR_SERVICE_NAME and sig):
            return
        if not verify_signature(COORDINATOR_SERVICE_NAME, sig, self.coordinator_public_key, data, self.signature_prefix):
            logger.warning("Invalid coordinator response signature")
            raise CoordinatorError("invalid_response_signature")

    async def post(self, envelope: dict[str, Any]) -> dict[str, Any]:
        if not self.configured:
            raise CoordinatorError("coordinator_not_configured")

        headers = self.sign_headers(envelope)
        # Send the exact bytes that were signed.
        body = stringify_envelope(envelope).encode("utf-8")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.post(self.url, content=body, headers=headers)

        if resp.status_code >= 400:
            raise CoordinatorError(f"http_{resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise CoordinatorError("malformed_response") from exc
        if not isinstance(data, dict):
            raise CoordinatorError("malformed_response")

        self._check_response_signature(resp, data)
        return data
