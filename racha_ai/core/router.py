"""
Cost-aware model routing.

Decides whether the local interpretation is good enough or a paid model
tier must be consulted, and enforces the daily budget and the response
cache around every call.

Routing Order:
1. Local confidence at or above threshold - answer locally, no cache or budget
2. Cache hit on the request fingerprint - answer from cache
3. FAST tier, then one escalation (BALANCED, or CAPABLE for complex text)
   while the model is still unsure, never more than ``max_model_calls``
   calls per request, retries included
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Optional, Protocol

from .errors import ProviderError, RachaError
from .guardrails import BudgetLedger, Reservation
from .lexicon import fold_accents, normalize_text
from .pricing import DEFAULT_EXCHANGE_RATE, DEFAULT_TIERS, ModelTier, TierProfile, calculate_cost_brl
from .prompts import ModelPrompt, build_prompt, parse_model_reply, reply_summary
from .resolution import CulturalContext, Interpretation, UserPreferences
from .split import SplitResult
from .token_counter import TokenUsage
from ..storage.cache import ResponseCache, compute_fingerprint
from ..storage.models import CacheEntry, ModelCallEvent

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_THRESHOLD = 0.8
DEFAULT_MAX_MODEL_CALLS = 2

COMPLEX_GROUP_SIZE = 6
COMPLEX_TEXT_LENGTH = 500
COMPLEX_SENTENCE_COUNT = 5
_PERCENT_PATTERN = re.compile(r"\d+\s*%|porcent|percentual|proporcional")
_CONDITIONAL_PATTERN = re.compile(r"(?<!\w)(?:se|caso|quando|menos|exceto|so)(?!\w)")
_GROUP_SIZE_PATTERN = re.compile(r"(\d+)\s*pessoas?")


@dataclass(frozen=True)
class ModelReply:
    """Raw answer from a model provider."""
    content: str
    model_confidence: Optional[float]
    prompt_tokens: int
    completion_tokens: int
    model: str
    request_id: Optional[str] = None


class ModelProvider(Protocol):
    """Anything that can answer a prompt on a given tier."""

    def call_model(self, tier: ModelTier, prompt: ModelPrompt) -> ModelReply:
        """Call the model configured for ``tier``.

        Raises:
            ProviderError: On transport failure, timeout or refusal
        """
        ...


@dataclass(frozen=True)
class RoutingOutcome:
    """What the router settled on for one request."""
    interpretation: Interpretation
    split_result: Optional[SplitResult] = None
    tier: Optional[ModelTier] = None
    cached: bool = False
    budget_exceeded: bool = False
    degraded: bool = False
    model_calls: int = 0


def is_complex(text: str, participant_count: int = 0) -> bool:
    """Whether an unsure FAST answer should escalate straight to CAPABLE.

    Complex means a large group, percentage rules, conditional wording,
    a very long message or many sentences.
    """
    folded = fold_accents(normalize_text(text))
    group_sizes = [int(n) for n in _GROUP_SIZE_PATTERN.findall(folded)]
    return (
        participant_count > COMPLEX_GROUP_SIZE
        or any(n > COMPLEX_GROUP_SIZE for n in group_sizes)
        or bool(_PERCENT_PATTERN.search(folded))
        or bool(_CONDITIONAL_PATTERN.search(folded))
        or len(text) > COMPLEX_TEXT_LENGTH
        or len([s for s in re.split(r"[.!?]+", text) if s.strip()]) > COMPLEX_SENTENCE_COUNT
    )


def escalation_tier(text: str, participant_count: int = 0) -> ModelTier:
    return ModelTier.CAPABLE if is_complex(text, participant_count) else ModelTier.BALANCED


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ModelRouter:
    """Routes uncertain interpretations to model tiers within budget."""

    def __init__(
        self,
        provider: Optional[ModelProvider],
        ledger: BudgetLedger,
        cache: ResponseCache,
        tiers: Optional[Dict[ModelTier, TierProfile]] = None,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        max_model_calls: int = DEFAULT_MAX_MODEL_CALLS,
        exchange_rate: Decimal = DEFAULT_EXCHANGE_RATE,
        record_call: Optional[Callable[[ModelCallEvent], None]] = None,
        clock: Callable[[], datetime] = _utcnow
    ):
        """Initialize the router.

        Args:
            provider: Model provider; None means offline (local answers only)
            ledger: Shared daily budget ledger
            cache: Shared response cache
            tiers: Tier profiles (defaults to the built-in tiers)
            confidence_threshold: Minimum confidence accepted without escalation
            max_model_calls: Hard limit of paid calls per request
            exchange_rate: BRL per USD, for actual call cost
            record_call: Optional sink for ModelCallEvent records
            clock: Returns the current aware datetime
        """
        if max_model_calls < 1:
            raise ValueError("max_model_calls must be >= 1")
        self.provider = provider
        self.ledger = ledger
        self.cache = cache
        self.tiers = dict(tiers or DEFAULT_TIERS)
        self.confidence_threshold = confidence_threshold
        self.max_model_calls = max_model_calls
        self.exchange_rate = exchange_rate
        self.record_call = record_call
        self._clock = clock

    def fingerprint(self, text: str, local: Interpretation,
                    context: Optional[CulturalContext] = None) -> str:
        hint = context.scenario_hint if context is not None else None
        return compute_fingerprint(text, hint, local.amount, len(local.participants))

    def route(
        self,
        text: str,
        local: Interpretation,
        context: Optional[CulturalContext] = None,
        preferences: Optional[UserPreferences] = None,
        split_fn: Optional[Callable[[Interpretation], Optional[SplitResult]]] = None
    ) -> RoutingOutcome:
        """Settle on an interpretation for ``text``.

        Args:
            text: Raw user utterance
            local: Deterministic interpretation of ``text``
            context: Optional cultural hints (the scenario hint is part of the fingerprint)
            preferences: Optional presentation preferences for the prompt
            split_fn: Computes the split stored alongside a fresh cache entry

        Returns:
            RoutingOutcome; never raises for provider failures or budget refusals
        """
        if local.confidence >= self.confidence_threshold:
            logger.debug("Local confidence %.2f accepted", local.confidence)
            return RoutingOutcome(interpretation=local)

        fingerprint = self.fingerprint(text, local, context)
        hit = self.cache.get(fingerprint)
        if hit is not None:
            logger.info("Cache hit for %s", fingerprint[:12])
            return RoutingOutcome(
                interpretation=hit.interpretation,
                split_result=hit.split_result,
                tier=hit.tier,
                cached=True,
            )

        if self.provider is None:
            logger.debug("No model provider configured; using local interpretation")
            return RoutingOutcome(interpretation=local)

        prompt = build_prompt(text, local, context, preferences)
        best = local
        best_tier: Optional[ModelTier] = None
        budget_exceeded = False
        degraded = False
        calls = 0
        retried = False
        tier = ModelTier.FAST

        while calls < self.max_model_calls:
            profile = self.tiers[tier]
            reservation = self.ledger.reserve(profile.cost_per_call_brl)
            if reservation is None:
                logger.warning("Budget exhausted before %s call", tier.value)
                budget_exceeded = True
                break
            calls += 1

            try:
                reply = self.provider.call_model(tier, prompt)
                revised, confidence, usage = self._read_reply(reply, local, profile)
            except ProviderError as e:
                self.ledger.release(reservation.amount, reservation.day)
                logger.warning("Provider failed on %s tier: %s", tier.value, e)
                if e.retryable and not retried and calls < self.max_model_calls:
                    retried = True
                    continue
                degraded = True
                break
            except Exception:
                self.ledger.release(reservation.amount, reservation.day)
                raise

            self._settle_cost(tier, reservation, reply, usage, retry_count=1 if retried else 0)
            best, best_tier = revised, tier
            logger.info("%s tier answered %s", tier.value, reply_summary(revised))

            if confidence >= self.confidence_threshold or tier is not ModelTier.FAST:
                break
            tier = escalation_tier(text, len(local.participants))
            logger.info("Escalating to %s tier (confidence %.2f)", tier.value, confidence)

        split_result = None
        if best_tier is not None and not degraded:
            split_result = self._split_for_cache(best, split_fn)
            self.cache.put(CacheEntry(
                fingerprint=fingerprint,
                interpretation=best,
                split_result=split_result,
                created_at=self._clock(),
                tier=best_tier,
            ))

        return RoutingOutcome(
            interpretation=best,
            split_result=split_result,
            tier=best_tier,
            budget_exceeded=budget_exceeded,
            degraded=degraded,
            model_calls=calls,
        )

    @staticmethod
    def _read_reply(reply: ModelReply, local: Interpretation, profile: TierProfile):
        """Parse a reply into (interpretation, confidence, token usage).

        Raises:
            ProviderError: If the reply cannot be used, including malformed
                token counts or values the interpretation rejects
        """
        baseline = (
            reply.model_confidence
            if reply.model_confidence is not None
            else profile.baseline_confidence
        )
        try:
            revised, confidence = parse_model_reply(reply.content, local, baseline)
            usage = TokenUsage(prompt_tokens=reply.prompt_tokens,
                               completion_tokens=reply.completion_tokens)
        except ProviderError:
            raise
        except (ValueError, TypeError, ArithmeticError) as e:
            raise ProviderError(f"Unusable model reply: {e}") from e
        return revised, confidence, usage

    def _settle_cost(self, tier: ModelTier, reservation: Reservation,
                     reply: ModelReply, usage: TokenUsage, retry_count: int) -> None:
        """Record the call and give back any unused part of the reservation."""
        try:
            actual = calculate_cost_brl(reply.model, usage, self.exchange_rate)
        except ValueError:
            actual = reservation.amount
        # The ledger keeps min(actual, estimate).
        if actual < reservation.amount:
            self.ledger.release(reservation.amount - actual, reservation.day)

        if self.record_call is not None:
            self.record_call(ModelCallEvent(
                timestamp=self._clock(),
                tier=tier,
                model=reply.model,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
                cost_brl=actual,
                retry_count=retry_count,
                request_id=reply.request_id,
            ))

    @staticmethod
    def _split_for_cache(interpretation: Interpretation, split_fn) -> Optional[SplitResult]:
        if split_fn is None:
            return None
        try:
            return split_fn(interpretation)
        except RachaError as e:
            logger.debug("No split cached: %s", e)
            return None
