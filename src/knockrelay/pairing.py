"""Pairing token generation and QR rendering.

The receiver shows a QR code whose payload is the bare token; the
controller scans it (see sampling.TokenScanner) and both join the relay
with the same token. The token is opaque to the relay.
"""

import io
import secrets

import qrcode
from qrcode.main import QRCode

TOKEN_BYTES = 4  # 8 hex characters


def generate_token() -> str:
    """Generate a short random pairing token."""
    return secrets.token_hex(TOKEN_BYTES)


class TokenQr:
    """Render a pairing token as a QR code."""

    def __init__(self, token: str):
        """Initialize QR renderer.

        Args:
            token: Pairing token to encode as the QR payload.
        """
        if not token:
            raise ValueError("token must not be empty")
        self.token = token

    def _create_qr(self) -> QRCode:
        qr = qrcode.QRCode(
            version=None,  # Auto-size
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=10,
            border=4,
        )
        qr.add_data(self.token)
        qr.make(fit=True)
        return qr

    def to_terminal(self) -> str:
        """Generate ASCII art for terminal display.

        Returns:
            String with QR code using Unicode block characters.
        """
        qr = self._create_qr()
        output = io.StringIO()
        qr.print_ascii(out=output, invert=True)
        return output.getvalue()

    def to_png(self, path: str) -> None:
        """Save QR code as PNG file.

        Args:
            path: Path to save PNG file.
        """
        qr = self._create_qr()
        img = qr.make_image(fill_color="black", back_color="white")
        img.save(path)
