"""LLMArbitrator — uses an LLM judge to decide disputes.

Arbitration flow:
    1. Render the case bundle (transaction, proofs, both parties'
       reputation snapshots, the dispute reason) into a judge prompt.
    2. Call the LLM via LiteLLM, falling back through the configured models.
    3. Parse the structured DECISION / CONFIDENCE / REFUND / RATIONALE reply.

Unlike a verifier, the arbitrator does not convert failures into a verdict:
any exception propagates so the engine records the dispute as still under
review and the sweep retries it later.
"""

from __future__ import annotations

import json
import math
import uuid
from decimal import Decimal, InvalidOperation

import litellm
from tenacity import retry, stop_after_attempt, wait_exponential

from escrow_engine.config import get_settings
from escrow_engine.domain.collaborators import ArbitrationRecord, CaseBundle
from escrow_engine.domain.enums import ArbitrationDecision
from escrow_engine.logging_config import get_logger

logger = get_logger(__name__)

JUDGE_SYSTEM_PROMPT = """You are an impartial arbitrator for an escrow service.

A buyer and a seller disagree about a transaction whose funds are held in escrow.
Weigh the submitted evidence first and the parties' track records second.

You MUST respond in EXACTLY this format (no extra text before or after):

DECISION: BUYER, SELLER, SPLIT or MORE_INFO
CONFIDENCE: a number from 0.0 to 1.0
REFUND: for SPLIT only, the amount to return to the buyer; otherwise NONE
RATIONALE: one paragraph explaining your decision

Rules:
- Use MORE_INFO when the evidence is insufficient to decide
- CONFIDENCE below 0.75 sends the case to a human reviewer
"""

JUDGE_USER_TEMPLATE = """## Transaction
{transaction}

## Dispute
Opened by: {initiator} ({initiator_role})
Reason: {reason}
Description: {description}

## Evidence
{proofs}

## Buyer track record
{buyer}

## Seller track record
{seller}

Decide who should receive the escrowed funds."""

_DECISIONS = {
    "BUYER": ArbitrationDecision.RESOLVED_BUYER,
    "SELLER": ArbitrationDecision.RESOLVED_SELLER,
    "SPLIT": ArbitrationDecision.RESOLVED_SPLIT,
    "MORE_INFO": ArbitrationDecision.NEED_MORE_INFO,
}


class JudgeResponseError(ValueError):
    """The LLM reply did not follow the required format."""


class LLMArbitrator:
    """Arbitrator that asks an LLM judge for a decision."""

    def __init__(
        self,
        model: str | None = None,
        fallback_models: list[str] | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> None:
        self._model = model
        self._fallback_models = fallback_models
        self._max_tokens = max_tokens
        self._temperature = temperature

    def _get_model_config(self) -> dict:
        settings = get_settings()
        return {
            "model": self._model or settings.litellm_model,
            "fallback_models": (
                self._fallback_models
                if self._fallback_models is not None
                else settings.litellm_fallback_model_list
            ),
            "max_tokens": self._max_tokens or settings.litellm_max_tokens,
            "temperature": (
                self._temperature if self._temperature is not None else settings.litellm_temperature
            ),
        }

    async def assess(self, bundle: CaseBundle) -> ArbitrationRecord:
        logger.info("arbitration.llm.start", dispute_id=bundle.dispute_id)
        prompt = self._render(bundle)
        reply, model = await self._complete(prompt)
        decision, confidence, refund, rationale = self._parse_response(reply)

        logger.info(
            "arbitration.llm.result",
            dispute_id=bundle.dispute_id,
            decision=decision.value,
            confidence=confidence,
            model=model,
        )
        return ArbitrationRecord(
            decision=decision,
            confidence=confidence,
            rationale=rationale,
            compensation_amount=refund,
            assessment_id=f"llm:{uuid.uuid4()}",
            details={"model": model, "llm_response": reply},
        )

    @staticmethod
    def _render(bundle: CaseBundle) -> str:
        proofs = "\n".join(
            f"- [{p['proof_type']}] by {p['submitter_id']}: "
            f"{p.get('description') or '(no description)'}"
            f" (ref: {p.get('content_ref') or 'none'}, verified: {p.get('verified')})"
            for p in bundle.proofs
        )
        return JUDGE_USER_TEMPLATE.format(
            transaction=json.dumps(bundle.transaction, indent=2, default=str),
            initiator=bundle.initiator_id,
            initiator_role="buyer" if bundle.initiated_by_buyer else "seller",
            reason=bundle.reason,
            description=bundle.description or "(none)",
            proofs=proofs or "(no evidence submitted)",
            buyer=json.dumps(bundle.buyer.__dict__, default=str),
            seller=json.dumps(bundle.seller.__dict__, default=str),
        )

    async def _complete(self, prompt: str) -> tuple[str, str]:
        """Try the primary model, then each fallback in order."""
        config = self._get_model_config()
        models = [config["model"], *config["fallback_models"]]
        last_error: Exception | None = None
        for model in models:
            try:
                return await self._call_llm(model, prompt, config), model
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                logger.warning("arbitration.llm.model_failed", model=model, error=str(exc))
        assert last_error is not None
        raise last_error

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _call_llm(self, model: str, prompt: str, config: dict) -> str:
        response = await litellm.acompletion(
            model=model,
            messages=[
                {"role": "system", "content": JUDGE_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_tokens=config["max_tokens"],
            temperature=config["temperature"],
        )
        content = response.choices[0].message.content
        if not content:
            raise ValueError("LLM returned empty response")
        return content.strip()

    @staticmethod
    def _parse_response(
        response: str,
    ) -> tuple[ArbitrationDecision, float, Decimal | None, str]:
        """Parse the structured judge reply.

        Expected format:
            DECISION: SPLIT
            CONFIDENCE: 0.8
            REFUND: 40
            RATIONALE: The item arrived damaged but usable...

        Raises:
            JudgeResponseError: missing or unknown DECISION / CONFIDENCE.
        """
        decision = None
        confidence = None
        refund = None
        rationale = ""

        for raw in response.split("\n"):
            line = raw.strip()
            label, _, value = line.partition(":")
            label = label.strip().upper()
            value = value.strip()
            if label == "DECISION":
                decision = _DECISIONS.get(value.upper().replace(" ", "_"))
            elif label == "CONFIDENCE":
                try:
                    parsed = float(value)
                except ValueError:
                    parsed = math.nan
                confidence = max(0.0, min(1.0, parsed)) if math.isfinite(parsed) else None
            elif label == "REFUND":
                try:
                    refund = Decimal(value)
                except InvalidOperation:
                    refund = None
                if refund is not None and not refund.is_finite():
                    refund = None
            elif label == "RATIONALE":
                idx = response.upper().index("RATIONALE:") + len("RATIONALE:")
                rationale = response[idx:].strip()
                break

        if decision is None or confidence is None:
            raise JudgeResponseError(f"Unparseable judge response: {response[:200]}")
        if decision is not ArbitrationDecision.RESOLVED_SPLIT:
            refund = None
        return decision, confidence, refund, rationale
