"""Text-generation client — thin wrapper around the hosted chat service."""

from __future__ import annotations

import json
import re
import time
from typing import Any

import httpx
import structlog

from tollgate.config import TextGenConfig
from tollgate.errors import UpstreamError, UpstreamTimeout
from tollgate.models import GeneratedArtifact

logger = structlog.get_logger()

_FENCE_RE = re.compile(r"```[a-zA-Z]*")

GENERATE_TEMPLATE = """RESPOND ONLY WITH PURE SOLIDITY CODE. NO MARKDOWN. NO EXPLANATION.
Create a contract named 'GenContract'.
IMPORTANT: Hardcode all values (name, symbol, supply) directly in the code.
DO NOT require constructor arguments.
REQUIRED: Include 'receive() external payable {{}}' so the contract can accept native currency.
Ensure Solidity ^0.8.20.
User Prompt: {prompt}"""

AUDIT_TEMPLATE = "Audit this Solidity code for security flaws:\n\n{code}"


def session_id_for(address: str) -> str:
    """UUID-shaped session id derived from a wallet address."""
    clean = address.replace("0x", "", 1).lower().ljust(32, "0")
    return f"{clean[0:8]}-{clean[8:12]}-{clean[12:16]}-{clean[16:20]}-{clean[20:32]}"


def strip_code_fences(text: str) -> str:
    """Drop markdown code fences (```solidity, ```) around generated source."""
    return _FENCE_RE.sub("", text).strip()


def decode_envelope(raw: str) -> str:
    """Extract `data.bot` from the response envelope, else return the raw body."""
    try:
        envelope = json.loads(raw)
    except ValueError:
        return raw
    if isinstance(envelope, dict):
        data = envelope.get("data")
        if isinstance(data, dict):
            bot = data.get("bot")
            if isinstance(bot, str) and bot:
                return bot
    return raw


class TextGenClient:
    """Async request/response client for the text-generation service."""

    def __init__(self, config: TextGenConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config
        self._transport = transport
        self.request_count = 0

    async def ask(
        self,
        *,
        model: str,
        question: str,
        session_id: str | None = None,
        history: bool = True,
    ) -> str:
        """Send one question and return the generated text."""
        if not self.config.api_key:
            raise UpstreamError("Text generation API key is not configured")

        payload: dict[str, Any] = {
            "model": model,
            "question": question,
            "chatHistory": "on" if history else "off",
        }
        if session_id:
            payload["sdkUniqueId"] = session_id

        self.request_count += 1
        request_id = self.request_count
        start = time.monotonic()
        logger.info("textgen.request", request_id=request_id, model=model, history=history)

        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout_s),
                transport=self._transport,
            ) as client:
                response = await client.post(
                    self.config.api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.config.api_key}"},
                )
        except httpx.TimeoutException as exc:
            logger.error("textgen.timeout", request_id=request_id, model=model)
            raise UpstreamTimeout("Text generation service timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("textgen.error", request_id=request_id, model=model, error=str(exc))
            raise UpstreamError(f"Text generation service failed: {exc}") from exc

        if response.status_code >= 400:
            logger.error(
                "textgen.bad_status",
                request_id=request_id,
                status_code=response.status_code,
                body=response.text[:300],
            )
            raise UpstreamError(f"Text generation service returned HTTP {response.status_code}")

        text = decode_envelope(response.text)
        logger.info(
            "textgen.response",
            request_id=request_id,
            length=len(text),
            duration=f"{time.monotonic() - start:.2f}s",
        )
        return text

    async def research(self, prompt: str, caller_id: str) -> str:
        return await self.ask(
            model=self.config.research_model,
            question=prompt,
            session_id=session_id_for(caller_id),
        )

    async def generate_contract(self, prompt: str, caller_id: str) -> GeneratedArtifact:
        raw = await self.ask(
            model=self.config.generator_model,
            question=GENERATE_TEMPLATE.format(prompt=prompt),
            session_id=session_id_for(caller_id),
        )
        return GeneratedArtifact(source_text=strip_code_fences(raw), origin_action="generate")

    async def audit_contract(self, code: str) -> str:
        return await self.ask(
            model=self.config.auditor_model,
            question=AUDIT_TEMPLATE.format(code=code),
            history=False,
        )
