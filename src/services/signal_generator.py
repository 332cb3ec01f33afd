# coding: utf-8
"""
Signal model adapter

The credit gate treats signal generation as an opaque async callable:

    async def generator(timeframe: Timeframe, tier: SubscriptionTier) -> SignalPayload

OpenAISignalGenerator is the default implementation (OpenAI chat API in JSON
mode). Tests and alternative models inject any callable with that signature.
"""
import json
import logging  # Needed for tenacity before_sleep_log level constants
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from loguru import logger
from openai import AsyncOpenAI, APIError, RateLimitError, APIConnectionError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from config.config import OPENAI_API_KEY, OPENAI_MODEL
from src.database.models import SignalDirection, SubscriptionTier, Timeframe


DEFAULT_PAIR = "XAUUSD"

_LINK_RE = re.compile(r"https?://\S+|www\.\S+")
_BRACKETS_RE = re.compile(r"\[[^\]]*\]|\([^)]*\.(?:com|org|net|io)[^)]*\)")


def clean_analysis(text: str) -> str:
    """Strip links and bracketed citations from model analysis text"""
    text = _BRACKETS_RE.sub("", text or "")
    text = _LINK_RE.sub("", text)
    return re.sub(r"\s{2,}", " ", text).strip()


@dataclass
class SignalPayload:
    """Trade levels returned by the signal model"""

    direction: SignalDirection
    entry_price: float
    stop_loss: float
    take_profits: List[Dict[str, Any]]
    confidence: int
    analysis: str = ""
    pair: str = DEFAULT_PAIR
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.direction = SignalDirection(self.direction)
        if self.entry_price <= 0 or self.stop_loss <= 0:
            raise ValueError("Signal prices must be positive")
        if not self.take_profits:
            raise ValueError("Signal must contain at least one take profit level")
        self.take_profits = sorted(
            self.take_profits, key=lambda tp: float(tp.get("risk_reward_ratio") or 0)
        )
        self.confidence = max(1, min(100, int(self.confidence)))
        self.analysis = clean_analysis(self.analysis)

    @property
    def take_profit(self) -> float:
        """First (closest) take profit level"""
        return float(self.take_profits[0]["price"])

    @classmethod
    def from_model_json(cls, data: Dict[str, Any], pair: str = DEFAULT_PAIR) -> "SignalPayload":
        """
        Parse the model's JSON answer

        Raises:
            ValueError: missing or non-positive prices
        """
        try:
            entry = float(data["entry"])
            stop_loss = float(data["stop_loss"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid market prices received: {e}")

        take_profits = []
        for index, tp in enumerate(data.get("take_profits") or [], start=1):
            take_profits.append({
                "level": int(tp.get("level", index)),
                "price": float(tp["price"]),
                "risk_reward_ratio": float(tp.get("risk_reward_ratio") or 0),
            })
        if not take_profits and data.get("take_profit") is not None:
            take_profits.append({
                "level": 1,
                "price": float(data["take_profit"]),
                "risk_reward_ratio": 0.0,
            })

        analysis = data.get("ai_analysis") or {}
        if isinstance(analysis, dict):
            text = " ".join(
                part for part in (analysis.get("brief"), analysis.get("detailed")) if part
            )
        else:
            text = str(analysis)

        return cls(
            direction="SELL" if str(data.get("action", "")).upper() == "SELL" else "BUY",
            entry_price=entry,
            stop_loss=stop_loss,
            take_profits=take_profits,
            confidence=data.get("confidence") or 75,
            analysis=text,
            pair=pair,
            extra={
                key: analysis.get(key)
                for key in ("market_sentiment", "trend_direction", "key_indicators")
                if isinstance(analysis, dict) and key in analysis
            },
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pair": self.pair,
            "direction": self.direction.value,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "take_profits": self.take_profits,
            "confidence": self.confidence,
            "analysis": self.analysis,
        }


class SignalGenerator(Protocol):
    async def __call__(self, timeframe: Timeframe, tier: SubscriptionTier) -> SignalPayload:
        ...


SIGNAL_PROMPT = """You are a professional {pair} trading analyst. Analyze the current {pair} market on the {timeframe} timeframe and provide a trading signal.

Perform technical analysis (support/resistance, RSI, MACD, moving averages, Bollinger Bands, sentiment, volume).
Decide BUY or SELL and calculate entry, stop loss and {tp_count} take profit level(s). Provide a confidence score 60-100.

The analysis text must contain no links, citations or bracketed references.

Return JSON only:
{{
    "action": "BUY or SELL",
    "entry": number,
    "stop_loss": number,
    "take_profit": number,
    "confidence": number,
    "take_profits": [{{"level": 1, "price": number, "risk_reward_ratio": number}}],
    "ai_analysis": {{
        "brief": "one sentence",
        "detailed": "{detail}",
        "market_sentiment": "BULLISH, BEARISH or NEUTRAL",
        "trend_direction": "UPWARD, DOWNWARD or SIDEWAYS",
        "key_indicators": ["indicator"]
    }}
}}"""


class OpenAISignalGenerator:
    """
    Default signal model: OpenAI chat completion in JSON mode

    Usage:
        >>> generator = OpenAISignalGenerator()
        >>> payload = await generator(Timeframe.H1, SubscriptionTier.PRO_TRADER)
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: str = OPENAI_MODEL,
        pair: str = DEFAULT_PAIR,
    ):
        self.client = client or AsyncOpenAI(api_key=OPENAI_API_KEY)
        self.model = model
        self.pair = pair

    def build_prompt(self, timeframe: Timeframe, tier: SubscriptionTier) -> str:
        rich = tier in (SubscriptionTier.PRO_TRADER, SubscriptionTier.ADMIN)
        return SIGNAL_PROMPT.format(
            pair=self.pair,
            timeframe=Timeframe(timeframe).value,
            tp_count=3 if rich else 1,
            detail="three sentences" if rich else "two sentences",
        )

    @retry(
        retry=retry_if_exception_type((APIError, RateLimitError, APIConnectionError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _complete(self, prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
            temperature=0.4,
        )
        return response.choices[0].message.content or "{}"

    async def __call__(self, timeframe: Timeframe, tier: SubscriptionTier) -> SignalPayload:
        prompt = self.build_prompt(timeframe, tier)
        raw = await self._complete(prompt)

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Signal model returned invalid JSON: {e}")

        payload = SignalPayload.from_model_json(data, pair=self.pair)
        logger.info(
            f"[SIGNAL] {payload.direction.value} {self.pair} {Timeframe(timeframe).value} "
            f"entry={payload.entry_price} confidence={payload.confidence}"
        )
        return payload
