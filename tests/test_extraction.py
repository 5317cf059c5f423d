"""
Tests for the text field extractor and the rule-based fraud scorer.
"""
from datetime import datetime

import pytest

from receiptrewards.errors import UpstreamUnavailable
from receiptrewards.receipts.pipeline.extraction import (
    TextFieldExtractor,
    extract_date,
    extract_total_amount,
    parse_receipt_text,
)
from receiptrewards.receipts.pipeline.fraud import SignalFraudScorer
from receiptrewards.receipts.pipeline.stores import normalize_tax_id
from receiptrewards.receipts.schemas import ExtractionResult

SAMPLE = (
    "ABC COFFEE PLC\n"
    "Bole Branch, Addis Ababa\n"
    "TIN: 0012345678\n"
    "Invoice No: INV-2024-001\n"
    "Date: 2026-02-28 14:30\n"
    "Macchiato x2        120.00\n"
    "Cake                480.00\n"
    "SUBTOTAL            600.00\n"
    "TOTAL               690.00\n"
    "FS No. 00012345\n"
)


class TestParse:
    def test_fields(self):
        result = parse_receipt_text(SAMPLE)
        assert result.tax_id == "0012345678"
        assert result.invoice_number == "INV-2024-001"
        assert result.branch_text == "Bole Branch, Addis Ababa"
        assert result.date_on_receipt == datetime(2026, 2, 28, 14, 30)
        assert result.total_amount == 690.0
        assert result.barcode == "00012345"
        assert result.confidence == "high"
        assert result.flags == []

    def test_grand_total_preferred(self):
        assert extract_total_amount("TOTAL 100.00\nGRAND TOTAL 1,150.50") == 1150.50

    @pytest.mark.parametrize("text, expected", [
        ("Date: 28/02/2026", datetime(2026, 2, 28)),
        ("2026.02.28 09:05:10", datetime(2026, 2, 28, 9, 5, 10)),
        ("Feb 28, 2026", datetime(2026, 2, 28)),
    ])
    def test_date_formats(self, text, expected):
        assert extract_date(text) == expected

    def test_unreadable_text_is_low_confidence(self):
        result = parse_receipt_text("hello")
        assert result.confidence == "low"
        assert "not_a_receipt" in result.flags
        assert "total_amount_not_found" in result.flags

    def test_extractor_hashes_bytes(self):
        result = TextFieldExtractor().extract(SAMPLE.encode())
        assert len(result.image_hash) == 64
        assert result.tax_id == "0012345678"

    def test_undecodable_upload(self):
        with pytest.raises(UpstreamUnavailable):
            TextFieldExtractor().extract(b"\xff\xd8\xff\xe0binary", "photo.jpg")


class TestTaxIdNormalization:
    def test_ocr_confusions(self):
        assert normalize_tax_id("OO1234S6B") == "001234568"
        assert normalize_tax_id("I2-3 l") == "1231"
        assert normalize_tax_id(None) == ""


class TestFraudScorer:
    def test_clean_receipt_scores_zero(self):
        score = SignalFraudScorer().score(SAMPLE.encode(), parse_receipt_text(SAMPLE))
        assert score.overall == 0
        assert score.indicators == []

    def test_generator_signature(self):
        image = b"\x89PNG...parameters: Stable Diffusion v1.5..."
        score = SignalFraudScorer().score(image, ExtractionResult(confidence="high"))
        assert score.ai_generated == 80
        assert score.overall == 40
        assert "AI generation signature in metadata" in score.indicators

    def test_scores_are_capped(self):
        image = b"photoshop midjourney"
        extraction = ExtractionResult(confidence="low", flags=["not_a_receipt"], total_amount=-1)
        score = SignalFraudScorer().score(image, extraction)
        assert score.overall == 100
