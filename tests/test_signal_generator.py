"""
Tests for the signal model adapter
"""

import json
import pytest
from types import SimpleNamespace

from src.database.models import SignalDirection, SubscriptionTier, Timeframe
from src.services.signal_generator import OpenAISignalGenerator, SignalPayload, clean_analysis


MODEL_ANSWER = {
    "action": "sell",
    "entry": 2381.4,
    "stop_loss": 2391.0,
    "take_profit": 2370.0,
    "confidence": 140,
    "take_profits": [
        {"level": 3, "price": 2350.0, "risk_reward_ratio": 3.2},
        {"level": 1, "price": 2370.0, "risk_reward_ratio": 1.2},
        {"level": 2, "price": 2362.0, "risk_reward_ratio": 2.0},
    ],
    "ai_analysis": {
        "brief": "Bearish rejection at 2385 [1].",
        "detailed": "See https://example.com/gold for details. RSI diverges.",
        "market_sentiment": "BEARISH",
    },
}


class FakeCompletions:
    def __init__(self, content: str):
        self.content = content
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_client(content: str):
    completions = FakeCompletions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def test_clean_analysis():
    text = "Gold holds support [source] (reuters.com/markets) see www.example.org now  ."
    assert clean_analysis(text) == "Gold holds support see now ."


def test_from_model_json_orders_levels_and_clamps():
    payload = SignalPayload.from_model_json(MODEL_ANSWER)

    assert payload.direction == SignalDirection.SELL
    assert [tp["risk_reward_ratio"] for tp in payload.take_profits] == [1.2, 2.0, 3.2]
    assert payload.take_profit == 2370.0
    assert payload.confidence == 100
    assert "http" not in payload.analysis
    assert "[1]" not in payload.analysis
    assert payload.extra == {"market_sentiment": "BEARISH"}


def test_from_model_json_single_take_profit():
    payload = SignalPayload.from_model_json(
        {"action": "BUY", "entry": 2300, "stop_loss": 2290, "take_profit": 2320, "confidence": 65}
    )

    assert payload.take_profits == [{"level": 1, "price": 2320.0, "risk_reward_ratio": 0.0}]
    assert payload.to_dict()["take_profit"] == 2320.0


@pytest.mark.parametrize(
    "data",
    [
        {"action": "BUY", "stop_loss": 2290, "take_profit": 2320},
        {"action": "BUY", "entry": 0, "stop_loss": 2290, "take_profit": 2320},
        {"action": "BUY", "entry": 2300, "stop_loss": 2290},
    ],
)
def test_from_model_json_rejects_bad_prices(data):
    with pytest.raises(ValueError):
        SignalPayload.from_model_json(data)


async def test_openai_generator_parses_answer():
    client, completions = fake_client(json.dumps(MODEL_ANSWER))
    generator = OpenAISignalGenerator(client=client, model="test-model")

    payload = await generator(Timeframe.H4, SubscriptionTier.PRO_TRADER)

    assert payload.pair == "XAUUSD"
    assert payload.entry_price == 2381.4
    request = completions.requests[0]
    assert request["model"] == "test-model"
    assert request["response_format"] == {"type": "json_object"}
    assert "4H timeframe" in request["messages"][0]["content"]
    assert "3 take profit level(s)" in request["messages"][0]["content"]


async def test_openai_generator_invalid_json():
    client, _ = fake_client("not json")
    generator = OpenAISignalGenerator(client=client)

    with pytest.raises(ValueError):
        await generator(Timeframe.H1, SubscriptionTier.FREE)


def test_prompt_depends_on_tier():
    generator = OpenAISignalGenerator(client=SimpleNamespace())

    assert "1 take profit level(s)" in generator.build_prompt(Timeframe.M15, SubscriptionTier.FREE)
    assert "3 take profit level(s)" in generator.build_prompt(Timeframe.M15, SubscriptionTier.ADMIN)
