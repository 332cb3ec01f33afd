"""Business services: pricing, payments, subscriptions, credit gate, review challenge"""
from .credit_gate import CreditGate
from .review_challenge import ReviewChallengeService
from .signal_generator import OpenAISignalGenerator, SignalPayload

__all__ = ['CreditGate', 'ReviewChallengeService', 'OpenAISignalGenerator', 'SignalPayload']
