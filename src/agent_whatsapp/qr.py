"""Rendering of pairing QR challenges for logs."""

import base64
import io

import qrcode
from qrcode.image.svg import SvgPathImage


def render_terminal(payload: str) -> str:
    """Render a QR code as ASCII art for a terminal."""
    qr = qrcode.QRCode(border=1)
    qr.add_data(payload)
    qr.make(fit=True)
    out = io.StringIO()
    qr.print_ascii(out=out, invert=True)
    return out.getvalue()


def render_data_url(payload: str) -> str:
    """Render a QR code as an SVG data URL that can be opened in a browser."""
    image = qrcode.make(payload, image_factory=SvgPathImage)
    buffer = io.BytesIO()
    image.save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


def render_for_environment(payload: str, environment: str) -> str:
    """Terminal art in development, a data URL everywhere else."""
    if environment == "development":
        return render_terminal(payload)
    return render_data_url(payload)
