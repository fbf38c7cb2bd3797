"""
Expense interpreter.

Single entry point that ties the local pass, the model router and the
split policies together. It never raises: every failure is reported on
the returned InterpretResult.

The model path runs on a shared worker pool. If it does not finish within
the timeout the caller gets the local interpretation flagged as degraded,
while the worker carries on and stores its answer in the cache for the
next identical request.
"""

import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, replace
from datetime import timedelta
from decimal import Decimal
from functools import partial
from typing import Mapping, Optional, Sequence

from .errors import InputError, InsufficientDataError, ProviderError, RachaError
from .guardrails import BudgetLedger
from .lexicon import SplitMethod, normalize_text
from .pricing import ModelTier
from .resolution import CulturalContext, Interpretation, UserPreferences, resolve
from .router import ModelRouter, RoutingOutcome
from .split import SplitConstraints, SplitResult, calculate_split
from ..storage.cache import ResponseCache
from ..storage.repository import CacheRepository, LedgerRepository, initialize_schema, insert_call_event

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_WORKERS = 4

ERROR_INSUFFICIENT_DATA = "insufficient_data"
ERROR_INVALID_INPUT = "invalid_input"


@dataclass(frozen=True)
class InterpretResult:
    """Outcome of one interpret call."""
    interpretation: Interpretation
    split_result: Optional[SplitResult] = None
    tier: Optional[ModelTier] = None
    cached: bool = False
    budget_exceeded: bool = False
    degraded: bool = False
    error: Optional[str] = None
    missing: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class SplitInputs:
    """Caller-supplied data some split methods need."""
    consumption: Optional[Mapping[str, Decimal]] = None
    families: Optional[Mapping[str, Sequence[str]]] = None
    host: Optional[str] = None
    constraints: Optional[SplitConstraints] = None

    @property
    def is_empty(self) -> bool:
        return (
            not self.consumption
            and not self.families
            and self.host is None
            and (self.constraints is None or self.constraints.is_empty)
        )


class ExpenseInterpreter:
    """Interprets pt-BR expense messages into splits."""

    def __init__(
        self,
        router: ModelRouter,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        executor: Optional[ThreadPoolExecutor] = None
    ):
        """Initialize the interpreter.

        Args:
            router: Router holding the provider, ledger and cache
            timeout: Default seconds to wait for the model path
            executor: Worker pool; one is created (and owned) if omitted
        """
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        self.router = router
        self.timeout = timeout
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=DEFAULT_WORKERS, thread_name_prefix="racha-ai"
        )

    def interpret(
        self,
        text: str,
        known_participants: Optional[Sequence[str]] = None,
        cultural_context: Optional[CulturalContext] = None,
        *,
        consumption: Optional[Mapping[str, Decimal]] = None,
        families: Optional[Mapping[str, Sequence[str]]] = None,
        host: Optional[str] = None,
        constraints: Optional[SplitConstraints] = None,
        preferences: Optional[UserPreferences] = None,
        timeout: Optional[float] = None
    ) -> InterpretResult:
        """Interpret ``text`` and compute the split.

        Args:
            text: Raw user utterance in pt-BR
            known_participants: Participant names, in mention order
            cultural_context: Optional hints (region, scenario, group, time)
            consumption: participant -> consumed value, for by-consumption splits
            families: unit -> members, for by-family splits
            host: Host exempted from paying under host-pays
            constraints: Half portions and excluded items
            preferences: Presentation preferences forwarded to the model
            timeout: Seconds to wait for the model path (defaults to ``self.timeout``)

        Returns:
            InterpretResult; ``error`` is set instead of raising
        """
        inputs = SplitInputs(consumption, families, host, constraints)

        if not normalize_text(text or ""):
            return InterpretResult(
                interpretation=resolve("", known_participants),
                error=ERROR_INVALID_INPUT,
                message="Expense text is empty",
            )

        local = resolve(text, known_participants, cultural_context)
        split_fn = partial(self._split, inputs=inputs)

        if local.confidence >= self.router.confidence_threshold:
            outcome = RoutingOutcome(interpretation=local)
        else:
            # Only splits that depend on nothing but the text are cached.
            cache_split = split_fn if inputs.is_empty else None
            outcome = self._route_with_timeout(
                text, local, cultural_context, preferences, cache_split,
                self.timeout if timeout is None else timeout
            )

        interpretation = outcome.interpretation
        if interpretation.participants != local.participants:
            interpretation = replace(interpretation, participants=local.participants)

        return self._finish(outcome, interpretation, inputs, split_fn)

    def close(self) -> None:
        """Shut down the worker pool if this interpreter created it."""
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _route_with_timeout(self, text, local, context, preferences, split_fn, timeout) -> RoutingOutcome:
        future = self._executor.submit(
            self.router.route, text, local, context, preferences, split_fn
        )
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            logger.warning("Model path exceeded %.1fs; answering locally", timeout)
            future.add_done_callback(_log_background_failure)
            return RoutingOutcome(interpretation=local, degraded=True)
        except ProviderError as e:
            logger.warning("Model path failed: %s", e)
            return RoutingOutcome(interpretation=local, degraded=True)
        except sqlite3.Error:
            logger.exception("Storage failed on the model path")
            return RoutingOutcome(interpretation=local, degraded=True)
        except Exception:
            logger.exception("Model path crashed; answering locally")
            return RoutingOutcome(interpretation=local, degraded=True)

    def _finish(self, outcome: RoutingOutcome, interpretation: Interpretation,
                inputs: SplitInputs, split_fn) -> InterpretResult:
        flags = dict(
            tier=outcome.tier,
            cached=outcome.cached,
            budget_exceeded=outcome.budget_exceeded,
            degraded=outcome.degraded,
        )

        split_result = None
        if (outcome.cached and outcome.split_result is not None
                and inputs.is_empty
                and interpretation == outcome.interpretation):
            split_result = outcome.split_result
        else:
            try:
                split_result = split_fn(interpretation)
            except InsufficientDataError as e:
                return InterpretResult(
                    interpretation=interpretation,
                    error=ERROR_INSUFFICIENT_DATA,
                    missing=e.missing,
                    message=str(e),
                    **flags
                )
            except InputError as e:
                return InterpretResult(
                    interpretation=replace(interpretation, confidence=0.0),
                    error=ERROR_INVALID_INPUT,
                    message=str(e),
                    **flags
                )

        return InterpretResult(interpretation=interpretation, split_result=split_result, **flags)

    @staticmethod
    def _split(interpretation: Interpretation, inputs: SplitInputs) -> SplitResult:
        if interpretation.amount is None:
            raise InsufficientDataError("The total amount was not found", missing="amount")
        if interpretation.method is SplitMethod.UNKNOWN:
            raise InsufficientDataError(
                "Split method is unknown; ask how the bill should be divided",
                missing="method",
            )
        grouped = interpretation.method is SplitMethod.BY_FAMILY and inputs.families
        if not interpretation.participants and not grouped:
            raise InsufficientDataError("Participants were not supplied", missing="participants")

        return calculate_split(
            interpretation.method,
            interpretation.amount,
            interpretation.participants,
            consumption=inputs.consumption,
            families=inputs.families,
            host=inputs.host,
            constraints=inputs.constraints,
        )


def _log_background_failure(future) -> None:
    error = future.exception()
    if error is None:
        logger.info("Background model call finished after timeout")
    elif isinstance(error, RachaError):
        logger.warning("Background model call failed: %s", error)
    else:
        logger.error("Background model call crashed: %r", error)


def create_interpreter(config, provider=None, persist: bool = True) -> ExpenseInterpreter:
    """Wire an interpreter, its router, ledger and cache from an EngineConfig.

    Args:
        config: Loaded EngineConfig
        provider: Model provider, or None to stay offline
        persist: Back the ledger, cache and call log with ``config.db_path``

    Returns:
        Ready-to-use ExpenseInterpreter
    """
    ledger_repository = cache_repository = record_call = None
    if persist:
        initialize_schema(config.db_path)
        ledger_repository = LedgerRepository(config.db_path)
        cache_repository = CacheRepository(config.db_path)
        record_call = partial(insert_call_event, db_path=config.db_path)

    ledger = BudgetLedger(
        config.budget.daily_brl,
        config.budget.alert_threshold_pct,
        repository=ledger_repository,
    )
    cache = ResponseCache(
        ttl=timedelta(hours=config.cache.ttl_hours),
        repository=cache_repository,
    )
    router = ModelRouter(
        provider,
        ledger,
        cache,
        tiers=config.tiers,
        confidence_threshold=config.routing.confidence_threshold,
        max_model_calls=config.routing.max_model_calls,
        exchange_rate=config.exchange_rate_usd_brl,
        record_call=record_call,
    )
    return ExpenseInterpreter(router, timeout=config.routing.timeout_seconds)
