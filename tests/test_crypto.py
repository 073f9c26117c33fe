"""Tests for key derivation and chunk ID calculation."""

import hashlib
import hmac

import pytest

from engine.crypto import ChunkIdCalculator, chunk_id, derive_chunk_id_key, derive_key, derive_stream_key, get_mac


class TestDeriveKey:
    def test_rfc5869_test_case_1(self):
        """HKDF-Expand output for the PRK of RFC 5869 test case 1."""
        prk = bytes.fromhex("077709362c2e32df0ddc3f0dc47bba6390b6c73bb50f9c3122ec844ad7c2b3e5")
        info = bytes.fromhex("f0f1f2f3f4f5f6f7f8f9")
        okm = derive_key(prk, info, out_length=42)
        assert okm.hex() == (
            "3cb25f25faacd57a90434f64d0362f2a2d2d0a90cf1a5a4c5db02d56ecc4c5bf34007208d5b887185865"
        )

    def test_deterministic(self, main_key):
        assert derive_key(main_key, b"info") == derive_key(main_key, b"info")

    def test_info_separates_keys(self, main_key):
        assert derive_stream_key(main_key) != derive_chunk_id_key(main_key)
        assert len(derive_stream_key(main_key)) == 32
        assert len(derive_chunk_id_key(main_key)) == 32

    def test_output_too_long(self, main_key):
        with pytest.raises(ValueError):
            derive_key(main_key, b"info", out_length=255 * 32 + 1)

    def test_maximum_output_length(self, main_key):
        assert len(derive_key(main_key, b"info", out_length=255 * 32)) == 255 * 32


class TestChunkId:
    def test_is_hmac_sha256_hex(self, chunk_id_key):
        data = b"some chunk plaintext"
        expected = hmac.new(chunk_id_key, data, hashlib.sha256).hexdigest()
        assert chunk_id(data, chunk_id_key) == expected
        assert len(expected) == 64

    def test_deterministic_and_distinct(self, chunk_id_key):
        assert chunk_id(b"a", chunk_id_key) == chunk_id(b"a", chunk_id_key)
        assert chunk_id(b"a", chunk_id_key) != chunk_id(b"b", chunk_id_key)

    def test_depends_on_key(self, chunk_id_key):
        other_key = bytes(32)
        assert chunk_id(b"a", chunk_id_key) != chunk_id(b"a", other_key)

    def test_calculator_reusable_across_chunks(self, chunk_id_key):
        calculator = get_mac(chunk_id_key)
        calculator.update(b"first ")
        calculator.update(b"chunk")
        first = calculator.finalize()
        calculator.update(b"second chunk")
        second = calculator.finalize()

        assert first == chunk_id(b"first chunk", chunk_id_key)
        assert second == chunk_id(b"second chunk", chunk_id_key)

    def test_reset_discards_partial_input(self, chunk_id_key):
        calculator = ChunkIdCalculator(chunk_id_key)
        calculator.update(b"garbage")
        calculator.reset()
        calculator.update(b"data")
        assert calculator.finalize() == chunk_id(b"data", chunk_id_key)

    def test_wrong_key_size(self):
        with pytest.raises(ValueError):
            ChunkIdCalculator(b"short")
