"""
Prompt construction and model-reply parsing.

The model receives the utterance together with what the local pass already
found, and must answer with a single JSON object. Anything it leaves out
or gets wrong falls back to the local value.
"""

import json
import math
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple

from .amounts import MAX_AMOUNT, parse_brl
from .errors import ProviderError
from .lexicon import Scenario, SplitMethod
from .resolution import CulturalContext, Interpretation, UserPreferences

CENTS = Decimal("0.01")

SYSTEM_PROMPT = """Você é o RachaAI, assistente especializado em dividir contas no Brasil.

REGRAS FUNDAMENTAIS:
- Seja preciso com valores em reais (R$), sem arredondar por conta própria
- Use contexto cultural brasileiro (churrasco, happy hour, rodízio, vaquinha)
- Nunca invente participantes que não foram informados

CONTEXTOS BRASILEIROS COMUNS:
- "Rachar" = dividir igualmente
- "Vaquinha" = coleta em que todos contribuem com o mesmo valor
- "Eu pago" = o anfitrião paga a parte dele
- "Pila" ou "conto" = reais

Responda APENAS com um objeto JSON com as chaves:
"scenario": um de rodizio, happy_hour, churrasco, aniversario, vaquinha, viagem, restaurante, transporte, unknown
"method": um de equal, by_consumption, host_pays, vaquinha, by_family, unknown
"amount": valor total em reais como texto, ex. "120.00", ou null
"confidence": número entre 0 e 1 indicando sua certeza"""


@dataclass(frozen=True)
class ModelPrompt:
    """System and user messages for one model call."""
    system: str
    user: str


def build_prompt(
    text: str,
    local: Interpretation,
    context: Optional[CulturalContext] = None,
    preferences: Optional[UserPreferences] = None
) -> ModelPrompt:
    """Build the prompt for ``text``, enriched with the local analysis.

    Args:
        text: Raw user utterance
        local: Deterministic interpretation of the same text
        context: Optional cultural hints
        preferences: Optional presentation preferences

    Returns:
        ModelPrompt ready for any provider
    """
    analysis = [
        f"cenário={local.scenario.value}",
        f"método={local.method.value}",
        f"valor={local.amount if local.amount is not None else 'desconhecido'}",
        f"participantes={', '.join(local.participants) or 'nenhum informado'}",
        f"confiança={local.confidence:.2f}",
    ]
    lines = [f"Mensagem: {text.strip()}", "", f"[Análise local: {'; '.join(analysis)}]"]

    if context is not None:
        hints = [
            f"{label}={value}"
            for label, value in (
                ("região", context.region),
                ("cenário sugerido", context.scenario_hint),
                ("grupo", context.group_type),
                ("horário", context.time_of_day),
            )
            if value
        ]
        if hints:
            lines.append(f"[Contexto brasileiro: {'; '.join(hints)}]")

    if preferences is not None:
        prefs = [
            f"{label}={value}"
            for label, value in (
                ("formalidade", preferences.formality),
                ("pagamento", preferences.payment_preference),
            )
            if value
        ]
        if prefs:
            lines.append(f"[Preferências: {'; '.join(prefs)}]")

    return ModelPrompt(system=SYSTEM_PROMPT, user="\n".join(lines))


def _extract_first_json_block(text: str) -> str:
    text = text.strip()
    if text.startswith("{") and text.endswith("}"):
        return text
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return text
    return text[start : end + 1]


def parse_model_reply(
    content: str,
    fallback: Interpretation,
    default_confidence: float
) -> Tuple[Interpretation, float]:
    """Merge a model's JSON answer over the local interpretation.

    Participants and matched keywords always come from ``fallback``: the
    model may classify, it may not introduce people.

    Args:
        content: Raw reply text from the provider
        fallback: Local interpretation to fill gaps from
        default_confidence: Tier baseline used when the reply has none

    Returns:
        Tuple of (new Interpretation, model confidence)

    Raises:
        ProviderError: If the reply holds no JSON object
    """
    try:
        data = json.loads(_extract_first_json_block(content or ""))
    except json.JSONDecodeError as e:
        raise ProviderError(f"Model reply is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise ProviderError("Model reply must be a JSON object")

    confidence = _confidence(data.get("confidence"), default_confidence)
    revised = replace(
        fallback,
        scenario=_enum(Scenario, data.get("scenario"), fallback.scenario),
        method=_enum(SplitMethod, data.get("method"), fallback.method),
        amount=_amount(data.get("amount"), fallback.amount),
        confidence=confidence,
    )
    return revised, confidence


def _enum(enum_cls, value: Any, default):
    if not isinstance(value, str):
        return default
    try:
        parsed = enum_cls(value.strip().lower())
    except ValueError:
        return default
    return default if parsed.value == "unknown" else parsed


def _amount(value: Any, default: Optional[Decimal]) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        try:
            amount = Decimal(str(value)).quantize(CENTS)
        except InvalidOperation:
            return default
    elif isinstance(value, str):
        amount = parse_brl(value.replace("R$", "").strip())
    else:
        return default
    if amount is None or not amount.is_finite() or amount <= 0 or amount > MAX_AMOUNT:
        return default
    return amount


def _confidence(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        if default is None or math.isnan(default):
            return 0.0
        return _clamp(default)
    return _clamp(value)


def _clamp(value: float) -> float:
    return round(min(max(float(value), 0.0), 1.0), 4)


def reply_summary(interpretation: Interpretation) -> Dict[str, Any]:
    """Compact dict used in debug logging of model answers."""
    return {
        "scenario": interpretation.scenario.value,
        "method": interpretation.method.value,
        "amount": None if interpretation.amount is None else str(interpretation.amount),
        "confidence": interpretation.confidence,
    }
