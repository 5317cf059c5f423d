"""
Rule-based fraud signals.

Image forensics belong to an external scorer; this default only looks at
what the extraction step already produced plus a few byte-level
signatures, so every point it adds is deterministic and explainable.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional, Protocol

from receiptrewards.clock import utcnow
from receiptrewards.receipts.schemas import ExtractionResult, FraudScore


class FraudScorer(Protocol):
    def score(self, image: bytes, extraction: ExtractionResult) -> FraudScore:
        ...


@dataclass
class FraudSignal:
    indicator: str
    weight: int
    kind: str = "overall"  # overall | tampering | ai_generated


# ---------------------------------------------------------------------------
# Individual checks
# ---------------------------------------------------------------------------

EDITOR_SIGNATURES = (b"photoshop", b"gimp", b"snapseed", b"picsart", b"pixlr")
GENERATOR_SIGNATURES = (b"stable diffusion", b"midjourney", b"dall-e", b"dall\xc2\xb7e", b"firefly")

MAX_PLAUSIBLE_TOTAL = 1_000_000


def check_not_a_receipt(image: bytes, ex: ExtractionResult) -> Optional[FraudSignal]:
    if "not_a_receipt" in ex.flags:
        return FraudSignal("Content does not look like a receipt", 30)
    return None


def check_low_confidence(image: bytes, ex: ExtractionResult) -> Optional[FraudSignal]:
    if ex.confidence == "low":
        return FraudSignal("Very few receipt fields could be read", 15)
    return None


def check_implausible_total(image: bytes, ex: ExtractionResult) -> Optional[FraudSignal]:
    if ex.total_amount is None:
        return None
    if ex.total_amount <= 0:
        return FraudSignal("Non-positive total amount", 25)
    if ex.total_amount > MAX_PLAUSIBLE_TOTAL:
        return FraudSignal("Implausibly large total amount", 25)
    return None


def check_future_date(image: bytes, ex: ExtractionResult) -> Optional[FraudSignal]:
    if ex.date_on_receipt is None:
        return None
    if ex.date_on_receipt > utcnow() + timedelta(days=1):
        return FraudSignal("Receipt dated more than a day in the future", 20)
    return None


def check_editor_signature(image: bytes, ex: ExtractionResult) -> Optional[FraudSignal]:
    head = image[:4096].lower()
    if any(sig in head for sig in EDITOR_SIGNATURES):
        return FraudSignal("Image editing software signature in metadata", 45, "tampering")
    return None


def check_generator_signature(image: bytes, ex: ExtractionResult) -> Optional[FraudSignal]:
    head = image[:4096].lower()
    if any(sig in head for sig in GENERATOR_SIGNATURES):
        return FraudSignal("AI generation signature in metadata", 80, "ai_generated")
    return None


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

FRAUD_CHECKS: list[Callable[[bytes, ExtractionResult], Optional[FraudSignal]]] = [
    check_not_a_receipt,
    check_low_confidence,
    check_implausible_total,
    check_future_date,
    check_editor_signature,
    check_generator_signature,
]

# Sub-scores are folded into the overall score with these weights
TAMPERING_WEIGHT = 0.7
AI_WEIGHT = 0.5


def combine(signals: list[FraudSignal]) -> FraudScore:
    tampering = min(sum(s.weight for s in signals if s.kind == "tampering"), 100)
    ai_generated = min(sum(s.weight for s in signals if s.kind == "ai_generated"), 100)
    overall = sum(s.weight for s in signals if s.kind == "overall")
    overall += round(tampering * TAMPERING_WEIGHT) + round(ai_generated * AI_WEIGHT)
    return FraudScore(
        overall=min(overall, 100),
        tampering=tampering,
        ai_generated=ai_generated,
        indicators=[s.indicator for s in signals],
    )


class SignalFraudScorer:
    def __init__(self, checks=None):
        self.checks = checks if checks is not None else FRAUD_CHECKS

    def score(self, image: bytes, extraction: ExtractionResult) -> FraudScore:
        signals: list[FraudSignal] = []
        for fn in self.checks:
            sig = fn(image, extraction)
            if sig is not None:
                signals.append(sig)
        return combine(signals)


def get_fraud_scorer() -> FraudScorer:
    return SignalFraudScorer()
