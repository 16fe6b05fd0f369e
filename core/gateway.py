"""
Model Call Gateway

Every external model call in the pipeline goes through ModelGateway.invoke,
which routes the stage to its provider, waits on that provider's token
bucket, times the network call, prices the usage and appends one prompt_log
row.
"""

import asyncio
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, Optional

from config import config
from core.base import ProviderError
from core.parsing import ParseResult, parse_json_response
from core.pricing import compute_cost
from database.repositories.prompt_log_repository import create_prompt_log


# ============================================================
# STAGE TAGS
# ============================================================

COMPONENT_EXTRACTION = 'component_extraction'
ELEMENT_EXTRACTION = 'element_extraction'
ANCHORING = 'anchoring'
VLM_LABELING = 'vlm_labeling'
ACCURACY_VALIDATION = 'accuracy_validation'

STAGE_TAGS = (
    COMPONENT_EXTRACTION,
    ELEMENT_EXTRACTION,
    ANCHORING,
    VLM_LABELING,
    ACCURACY_VALIDATION,
)

# Stored with each prompt log row; enough to find the prompt again
PROMPT_LOG_PREVIEW_CHARS = 2000


# ============================================================
# DATA STRUCTURES
# ============================================================

@dataclass(frozen=True)
class TrackingContext:
    """Which records a call belongs to; narrows as the pipeline goes deeper"""
    batch_id: int
    screenshot_id: Optional[int] = None
    component_id: Optional[int] = None
    element_id: Optional[int] = None

    def narrow(self, **kwargs) -> 'TrackingContext':
        return replace(self, **kwargs)


@dataclass
class Usage:
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    duration_ms: int = 0


@dataclass
class GatewayResult:
    raw_text: str
    parsed: ParseResult
    usage: Usage


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


# ============================================================
# GATEWAY
# ============================================================

class ModelGateway:
    """Uniform call contract over all model providers"""

    def __init__(
        self,
        session,
        providers: Dict,
        store,
        limiters: Optional[Dict] = None,
        stage_providers: Optional[Dict[str, str]] = None,
        clock=time.monotonic
    ):
        self.session = session
        self.providers = providers
        self.store = store
        self.limiters = limiters or {}
        self.stage_providers = stage_providers or config.STAGE_PROVIDERS
        self.clock = clock

    def provider_for(self, stage_tag):
        if stage_tag not in STAGE_TAGS:
            raise ValueError(f"Unknown stage: {stage_tag}")
        key = self.stage_providers[stage_tag]
        return key, self.providers[key]

    def model_for(self, stage_tag):
        return self.provider_for(stage_tag)[1].model

    async def invoke(self, stage_tag, prompt, image, tracking: TrackingContext) -> GatewayResult:
        """
        Run one model call.

        Args:
            stage_tag: One of STAGE_TAGS
            prompt: Prompt text (for detection, the object description)
            image: ImageRef of the screenshot
            tracking: Records this call is logged against

        Returns:
            GatewayResult with raw text, tagged parse and usage

        Raises:
            ProviderError: transport/API failure (logged before re-raising)
        """
        provider_key, provider = self.provider_for(stage_tag)

        limiter = self.limiters.get(provider_key)
        if limiter is not None:
            await limiter.acquire()

        started_at = _now_iso()
        start = self.clock()

        try:
            if stage_tag == VLM_LABELING:
                response = await provider.detect(self.session, image, prompt)
            else:
                response = await provider.generate(self.session, image, prompt)
        except ProviderError as e:
            duration_ms = int((self.clock() - start) * 1000)
            print(f"[Gateway][{stage_tag}] {provider.model} failed after {duration_ms}ms: {e}", flush=True)
            await self._write_log(
                stage_tag, Usage(model=provider.model, duration_ms=duration_ms),
                prompt, image, tracking, started_at, error=str(e)
            )
            raise

        duration_ms = int((self.clock() - start) * 1000)

        model = response.model or provider.model
        usage = Usage(
            model=model,
            input_tokens=response.input_tokens or 0,
            output_tokens=response.output_tokens or 0,
            cost=compute_cost(model, response.input_tokens, response.output_tokens),
            duration_ms=duration_ms
        )

        if response.objects is not None:
            parsed = ParseResult.complete({'objects': response.objects, 'request_id': response.request_id})
        else:
            parsed = parse_json_response(response.text)

        await self._write_log(stage_tag, usage, prompt, image, tracking, started_at, response_text=response.text)

        return GatewayResult(raw_text=response.text, parsed=parsed, usage=usage)

    async def _write_log(self, stage_tag, usage, prompt, image, tracking, started_at,
                         response_text=None, error=None):
        row = {
            'batch_id': tracking.batch_id,
            'screenshot_id': tracking.screenshot_id,
            'component_id': tracking.component_id,
            'element_id': tracking.element_id,
            'prompt_log_type': stage_tag,
            'prompt_log_model': usage.model,
            'prompt_log_input_tokens': usage.input_tokens,
            'prompt_log_output_tokens': usage.output_tokens,
            'prompt_log_cost': usage.cost,
            'prompt_log_duration': usage.duration_ms,
            'prompt_log_started_at': started_at,
            'prompt_log_completed_at': _now_iso(),
            'prompt_log_prompt': (prompt or '')[:PROMPT_LOG_PREVIEW_CHARS],
            'prompt_log_image_ref': getattr(image, 'url', None),
            'prompt_log_response': (response_text or '')[:PROMPT_LOG_PREVIEW_CHARS] or None,
            'prompt_log_error': error,
        }
        await asyncio.to_thread(create_prompt_log, self.store, row)
