from __future__ import annotations

import qrcode
import qrcode.image.svg


def render_svg(data: str) -> str:
    img = qrcode.make(data, image_factory=qrcode.image.svg.SvgPathImage, box_size=10, border=4)
    return img.to_string(encoding="unicode")
