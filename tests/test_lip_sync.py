"""
test_lip_sync.py — Byte-rate lip-sync integrity proxy.
"""

import pytest

from mediatrust.services.lip_sync import LIP_SYNC_SENTINEL, lip_sync_integrity


class TestSentinel:
    def test_no_audio(self):
        assert lip_sync_integrity(0, 10, 2.0) == LIP_SYNC_SENTINEL

    def test_audio_below_threshold(self):
        assert lip_sync_integrity(1023, 10, 2.0, min_audio_bytes=1024) == LIP_SYNC_SENTINEL

    def test_single_frame(self):
        assert lip_sync_integrity(500_000, 1, 2.0) == LIP_SYNC_SENTINEL

    def test_zero_interval(self):
        assert lip_sync_integrity(500_000, 10, 0) == LIP_SYNC_SENTINEL


class TestFormula:
    def test_ideal_rate_is_perfect(self):
        # 10 frames × 2s = 20s; 16 KB/s × 20s = 320 000 bytes
        assert lip_sync_integrity(320_000, 10, 2.0) == pytest.approx(1.0)

    def test_one_decade_below_ideal(self):
        # ratio 1.6 → deviation 1 → 1 − 0.4
        assert lip_sync_integrity(32_000, 10, 2.0) == pytest.approx(0.6)

    def test_one_decade_above_ideal(self):
        assert lip_sync_integrity(3_200_000, 10, 2.0) == pytest.approx(0.6)

    def test_tiny_ratio_is_floored(self):
        # ratio 0.0512 is floored to 0.1 → deviation log10(160)
        result = lip_sync_integrity(1024, 10, 2.0)
        assert result == pytest.approx(1 - 0.4 * 2.2041199826559246)

    def test_far_off_rate_clamps_to_zero(self):
        assert lip_sync_integrity(320_000_000, 10, 2.0) == 0.0

    @pytest.mark.parametrize("audio_len", [2_000, 50_000, 320_000, 900_000, 10_000_000])
    def test_always_in_unit_interval(self, audio_len):
        assert 0.0 <= lip_sync_integrity(audio_len, 15, 2.0) <= 1.0
