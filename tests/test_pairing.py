"""Tests for pairing token generation and QR rendering."""

import pytest

from knockrelay.pairing import TOKEN_BYTES, TokenQr, generate_token


class TestGenerateToken:
    """Tests for generate_token()."""

    def test_token_is_short_hex(self):
        token = generate_token()

        assert len(token) == TOKEN_BYTES * 2
        int(token, 16)

    def test_tokens_are_random(self):
        assert len({generate_token() for _ in range(50)}) == 50


class TestTokenQr:
    """Tests for QR rendering."""

    def test_rejects_empty_token(self):
        with pytest.raises(ValueError):
            TokenQr("")

    def test_payload_is_the_bare_token(self):
        qr = TokenQr("a1b2c3d4")._create_qr()

        assert [d.data for d in qr.data_list] == [b"a1b2c3d4"]

    def test_to_terminal_renders_blocks(self):
        text = TokenQr("a1b2c3d4").to_terminal()

        assert text.count("\n") > 10
        assert any(ch in text for ch in "█▀▄")

    def test_to_png_writes_image(self, tmp_path):
        path = tmp_path / "pair.png"

        TokenQr("a1b2c3d4").to_png(str(path))

        assert path.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"
