"""Pairing code rendering."""

import base64
import io

import qrcode


def render_qr_data_url(code: str) -> str:
    """Render a pairing code as a PNG data URL for browsers."""
    image = qrcode.make(code)
    buffer = io.BytesIO()
    image.save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
