"""
End-to-end tests for the expense interpreter.
"""
import json
import os
import shutil
import tempfile
import threading
import time
from decimal import Decimal

from racha_ai.config.loader import EngineConfig
from racha_ai.core.errors import ProviderError
from racha_ai.core.guardrails import BudgetLedger
from racha_ai.core.interpreter import ExpenseInterpreter, create_interpreter
from racha_ai.core.lexicon import Scenario, SplitMethod
from racha_ai.core.pricing import ModelTier
from racha_ai.core.router import ModelReply, ModelRouter
from racha_ai.core.split import SplitConstraints
from racha_ai.storage.cache import ResponseCache
from racha_ai.storage.repository import CacheRepository, fetch_recent_call_events

FOUR = ["Ana", "Bia", "Caio", "Duda"]
EQUAL_REPLY = json.dumps({"scenario": "restaurante", "method": "equal", "amount": "90.00", "confidence": 0.9})


class FakeProvider:
    """Provider returning the same reply, optionally waiting on a gate first."""

    def __init__(self, content=EQUAL_REPLY, gate=None, error=None):
        self.content = content
        self.gate = gate
        self.error = error
        self.calls = 0

    def call_model(self, tier, prompt):
        self.calls += 1
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        return ModelReply(self.content, None, 100, 50, "gpt-4o-mini")


def _interpreter(provider=None, cap=Decimal("100.00"), timeout=5.0):
    router = ModelRouter(provider, BudgetLedger(cap), ResponseCache())
    return ExpenseInterpreter(router, timeout=timeout)


class TestLiteralScenarios:
    """Test the canonical messages with no model involved."""

    def test_rodizio(self):
        """Test R$ 120,00 for 4 people is R$ 30,00 each."""
        with _interpreter() as interpreter:
            result = interpreter.interpret(
                "Rodízio de pizza. R$ 120,00 para 4 pessoas. Cada um paga igual.", FOUR
            )
        assert result.error is None
        assert result.interpretation.scenario == Scenario.RODIZIO
        assert result.interpretation.method == SplitMethod.EQUAL
        assert list(result.split_result.per_participant.values()) == [Decimal("30.00")] * 4
        assert result.tier is None
        assert result.split_result.is_balanced()

    def test_happy_hour_needs_consumption(self):
        """Test by-consumption without consumption data asks for it."""
        with _interpreter() as interpreter:
            result = interpreter.interpret(
                "Happy hour no bar. R$ 200,00. Cada um paga o que consumiu.", ["Ana", "Bia"]
            )
        assert result.error == "insufficient_data"
        assert result.missing == "consumption"
        assert result.split_result is None
        assert result.interpretation.method == SplitMethod.BY_CONSUMPTION

    def test_happy_hour_with_consumption(self):
        """Test consumption data completes the split."""
        with _interpreter() as interpreter:
            result = interpreter.interpret(
                "Happy hour no bar. R$ 200,00. Cada um paga o que consumiu.", ["Ana", "Bia"],
                consumption={"Ana": Decimal("120"), "Bia": Decimal("80")},
            )
        assert result.error is None
        assert result.split_result.per_participant == {"Ana": Decimal("120.00"), "Bia": Decimal("80.00")}

    def test_host_pays(self):
        """Test the host pays nothing and the guests share the bill."""
        people = ["Ana", "Bia", "Caio", "Duda", "Enzo"]
        with _interpreter() as interpreter:
            result = interpreter.interpret("Eu pago agora, depois acertamos. R$ 250,00.", people)
        assert result.interpretation.method == SplitMethod.HOST_PAYS
        assert result.split_result.per_participant["Ana"] == Decimal("0.00")
        assert [result.split_result.per_participant[p] for p in people[1:]] == [Decimal("62.50")] * 4

    def test_half_portion_constraint(self):
        """Test split constraints reach the split policy."""
        with _interpreter() as interpreter:
            result = interpreter.interpret(
                "Rodízio R$ 90,00 rachado igual", ["Ana", "Bia", "Caio"],
                constraints=SplitConstraints(half_portion=frozenset({"Caio"})),
            )
        assert result.split_result.per_participant["Caio"] == Decimal("18.00")
        assert result.split_result.is_balanced()


class TestErrors:
    """Test errors are reported on the result, never raised."""

    def test_blank_text(self):
        """Test empty text is invalid input."""
        with _interpreter() as interpreter:
            result = interpreter.interpret("   ", ["Ana"])
        assert result.error == "invalid_input"
        assert result.interpretation.confidence == 0.0

    def test_missing_amount(self):
        """Test a message without a value asks for the amount."""
        with _interpreter() as interpreter:
            result = interpreter.interpret("Rodízio, cada um paga igual", FOUR)
        assert result.error == "insufficient_data"
        assert result.missing == "amount"

    def test_missing_participants(self):
        """Test a complete message without people asks for participants."""
        with _interpreter() as interpreter:
            result = interpreter.interpret("Rodízio R$ 120,00, cada um paga igual")
        assert result.error == "insufficient_data"
        assert result.missing == "participants"

    def test_unknown_host_is_invalid(self):
        """Test a host outside the group is invalid input with zero confidence."""
        with _interpreter() as interpreter:
            result = interpreter.interpret(
                "Eu pago agora. R$ 100,00.", ["Ana", "Bia"], host="Zé"
            )
        assert result.error == "invalid_input"
        assert result.interpretation.confidence == 0.0
        assert result.split_result is None


class TestModelPath:
    """Test interpretation through the router."""

    def test_model_answer_completes_split(self):
        """Test an uncertain message is completed by the FAST tier."""
        provider = FakeProvider()
        with _interpreter(provider) as interpreter:
            result = interpreter.interpret("Jantar R$ 90", ["Ana", "Bia"])
        assert provider.calls == 1
        assert result.tier == ModelTier.FAST
        assert result.split_result.per_participant == {"Ana": Decimal("45.00"), "Bia": Decimal("45.00")}

    def test_repeated_request_is_idempotent(self):
        """Test the second identical request is served from the cache unchanged."""
        provider = FakeProvider()
        with _interpreter(provider) as interpreter:
            first = interpreter.interpret("Jantar R$ 90", ["Ana", "Bia"])
            second = interpreter.interpret("Jantar R$ 90", ["Ana", "Bia"])
        assert provider.calls == 1
        assert second.cached is True
        assert second.interpretation == first.interpretation
        assert second.split_result == first.split_result

    def test_cache_hit_uses_current_names(self):
        """Test a cached answer is applied to the names of the new request."""
        provider = FakeProvider()
        with _interpreter(provider) as interpreter:
            interpreter.interpret("Jantar R$ 90", ["Ana", "Bia"])
            result = interpreter.interpret("Jantar R$ 90", ["Caio", "Duda"])
        assert result.cached is True
        assert result.interpretation.participants == ("Caio", "Duda")
        assert list(result.split_result.per_participant) == ["Caio", "Duda"]

    def test_budget_exhausted(self):
        """Test a refused budget falls back to the local reading."""
        provider = FakeProvider()
        with _interpreter(provider, cap=Decimal("0.01")) as interpreter:
            result = interpreter.interpret("Jantar R$ 90", ["Ana", "Bia"])
        assert provider.calls == 0
        assert result.budget_exceeded is True
        assert result.error == "insufficient_data"
        assert result.missing == "method"

    def test_provider_failure_degrades(self):
        """Test provider failures give a degraded local answer."""
        provider = FakeProvider(error=ProviderError("boom", retryable=False))
        with _interpreter(provider) as interpreter:
            result = interpreter.interpret("Jantar R$ 90", ["Ana", "Bia"])
        assert result.degraded is True
        assert result.tier is None

    def test_unexpected_provider_crash_degrades(self):
        """Test an arbitrary provider exception never escapes interpret."""
        provider = FakeProvider(error=RuntimeError("socket closed"))
        with _interpreter(provider) as interpreter:
            result = interpreter.interpret("Jantar R$ 90", ["Ana", "Bia"])
            assert interpreter.router.ledger.snapshot().spent_brl == Decimal("0")
        assert result.degraded is True
        assert result.interpretation.amount == Decimal("90.00")

    def test_nan_amount_reply_is_ignored(self):
        """Test a reply with a NaN amount keeps the amount read from the text."""
        reply = '{"scenario": "restaurante", "method": "equal", "amount": NaN, "confidence": 0.9}'
        with _interpreter(FakeProvider(reply)) as interpreter:
            result = interpreter.interpret("Jantar R$ 90", ["Ana", "Bia"])
        assert result.error is None
        assert result.degraded is False
        assert result.split_result.per_participant == {"Ana": Decimal("45.00"), "Bia": Decimal("45.00")}

    def test_timeout_answers_locally_and_fills_cache(self):
        """Test a slow model degrades the answer and still caches its result."""
        gate = threading.Event()
        provider = FakeProvider(gate=gate)
        with _interpreter(provider, timeout=0.05) as interpreter:
            result = interpreter.interpret("Jantar R$ 90", ["Ana", "Bia"])
            assert result.degraded is True
            assert result.interpretation.method == SplitMethod.UNKNOWN

            gate.set()
            deadline = time.monotonic() + 5
            while len(interpreter.router.cache) == 0 and time.monotonic() < deadline:
                time.sleep(0.01)

            again = interpreter.interpret("Jantar R$ 90", ["Ana", "Bia"], timeout=5.0)
        assert again.cached is True
        assert again.interpretation.method == SplitMethod.EQUAL
        assert provider.calls == 1


class TestCreateInterpreter:
    """Test wiring from configuration."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "racha.db")
        self.config = EngineConfig(db_path=self.db_path)

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_persists_cache_and_calls(self):
        """Test model answers are stored in the database."""
        with create_interpreter(self.config, FakeProvider()) as interpreter:
            interpreter.interpret("Jantar R$ 90", ["Ana", "Bia"])

        assert CacheRepository(self.db_path).count() == 1
        events = fetch_recent_call_events(db_path=self.db_path)
        assert len(events) == 1
        assert events[0].tier == ModelTier.FAST

    def test_cache_shared_across_instances(self):
        """Test a new interpreter reuses answers stored by an earlier one."""
        with create_interpreter(self.config, FakeProvider()) as interpreter:
            interpreter.interpret("Jantar R$ 90", ["Ana", "Bia"])

        provider = FakeProvider()
        with create_interpreter(self.config, provider) as interpreter:
            result = interpreter.interpret("Jantar R$ 90", ["Ana", "Bia"])
        assert result.cached is True
        assert provider.calls == 0

    def test_offline(self):
        """Test an interpreter without a provider answers locally."""
        with create_interpreter(self.config, persist=False) as interpreter:
            result = interpreter.interpret("Jantar R$ 90", ["Ana", "Bia"])
        assert result.missing == "method"
        assert not os.path.exists(self.db_path)
