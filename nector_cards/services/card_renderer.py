"""Card image rendering."""

import asyncio
import io
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import qrcode
from PIL import Image, ImageDraw, ImageFont

from nector_cards.models.patient import PatientCard
from nector_cards.utils.address import ADDRESS_PLACEHOLDER, wrap_address
from nector_cards.utils.logging import get_logger

logger = get_logger(__name__)

Point = tuple[int, int]
Font = ImageFont.FreeTypeFont | ImageFont.ImageFont

_FONT_PATHS = {
    False: [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
        "/Library/Fonts/Arial.ttf",
        "C:/Windows/Fonts/arial.ttf",
    ],
    True: [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
        "/Library/Fonts/Arial Bold.ttf",
        "C:/Windows/Fonts/arialbd.ttf",
    ],
}


@dataclass(frozen=True)
class CardLayout:
    """Where each field goes on the card.

    Coordinates are text baselines in canvas pixels.
    """

    name: str
    address_line_width: int
    patient_id: Point
    patient_name: Point
    phone_number: Point
    address_line1: Point
    address_line2: Point
    discount: Point
    valid_till: Point
    fallback_fill: str
    download_name: str

    size: tuple[int, int] = (856, 540)
    text_size: int = 18
    emphasis_size: int = 16
    text_color: str = "#000000"
    discount_label: str = "Discount: {discount}%"
    valid_till_label: str = "Valid Till: {valid_till}"

    fallback_title: str = "Nector Hospital Card"
    fallback_title_at: Point = (20, 50)
    fallback_title_size: int = 24
    fallback_title_color: str = "#333333"

    # (x, y, side) of the QR block, top-left corner
    qr_box: tuple[int, int, int] | None = None


# Card printed straight after the issuance form
ISSUE_LAYOUT = CardLayout(
    name="issue",
    address_line_width=50,
    patient_id=(515, 250),
    patient_name=(515, 310),
    phone_number=(515, 370),
    address_line1=(515, 430),
    address_line2=(515, 455),
    discount=(450, 500),
    valid_till=(450, 525),
    discount_label="Discount UPTO: {discount}%",
    fallback_fill="#eeeeee",
    download_name="nector_loyalty_card.png",
)

# Card regenerated from a looked-up record
LOOKUP_LAYOUT = CardLayout(
    name="lookup",
    address_line_width=30,
    patient_id=(500, 188),
    patient_name=(500, 235),
    phone_number=(500, 280),
    address_line1=(480, 330),
    address_line2=(480, 355),
    discount=(455, 400),
    valid_till=(455, 425),
    fallback_fill="#f0f0f0",
    download_name="nector_patient_card.png",
    qr_box=(40, 300, 140),
)

LAYOUTS = {layout.name: layout for layout in (ISSUE_LAYOUT, LOOKUP_LAYOUT)}


@lru_cache(maxsize=16)
def get_font(size: int, bold: bool = False) -> Font:
    """Get a TrueType font of the given size, falling back to Pillow's bundled font."""
    for path in _FONT_PATHS[bold]:
        if os.path.exists(path):
            try:
                return ImageFont.truetype(path, size)
            except OSError:
                continue
    return ImageFont.load_default(size=size)


def qr_payload(card: PatientCard) -> str:
    """Text encoded in the card's QR block."""
    return "\n".join(
        [
            f"Patient ID: {card.patient_id}",
            f"Name: {card.patient_name}",
            f"Phone: {card.phone_number}",
            f"Address: {card.address or ADDRESS_PLACEHOLDER}",
            f"Discount: {card.discount}%",
            f"Valid Till: {card.valid_till}",
        ]
    )


def make_qr_image(payload: str, side: int) -> Image.Image:
    """Render a square QR code of ``side`` pixels."""
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_H, box_size=4, border=2)
    qr.add_data(payload)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white").get_image().convert("RGB")
    return image.resize((side, side), Image.Resampling.NEAREST)


def _decode_image(path: Path) -> Image.Image:
    with Image.open(path) as image:
        image.load()
        return image.convert("RGB")


async def load_background(path: Path | str | None) -> Image.Image | None:
    """Decode the card template off the event loop.

    Returns None when the template is missing or unreadable; the renderer then
    draws its fallback face.
    """
    if path is None:
        return None

    try:
        return await asyncio.to_thread(_decode_image, Path(path))
    except (OSError, Image.DecompressionBombError) as e:
        logger.warning(f"Card template {path} unavailable, using fallback: {e}")
        return None


@dataclass(frozen=True)
class RenderedCard:
    """A finished card raster."""

    image: Image.Image
    filename: str

    def to_png_bytes(self) -> bytes:
        """Encode the card as PNG bytes for sharing."""
        buffer = io.BytesIO()
        self.image.save(buffer, format="PNG")
        return buffer.getvalue()

    def save(self, directory: Path | str = ".", filename: str | None = None) -> Path:
        """Write the card as a PNG file and return its path."""
        target = Path(directory) / (filename or self.filename)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(self.to_png_bytes())
        return target


class CardRenderer:
    """Draws a patient card onto a template using a fixed layout."""

    def __init__(self, layout: CardLayout = ISSUE_LAYOUT):
        self.layout = layout

    def render(self, card: PatientCard, background: Image.Image | None = None) -> RenderedCard:
        """Render a card.

        Args:
            card: Record to print
            background: Decoded template, or None for the fallback face

        Returns:
            The rendered card
        """
        layout = self.layout
        canvas = self._base(background)
        draw = ImageDraw.Draw(canvas)

        regular = get_font(layout.text_size)
        bold = get_font(layout.emphasis_size, bold=True)

        self._text(draw, layout.patient_id, card.patient_id, regular, layout.text_size)
        self._text(draw, layout.patient_name, card.patient_name, regular, layout.text_size)
        self._text(draw, layout.phone_number, card.phone_number, regular, layout.text_size)

        line1, line2 = wrap_address(card.address, layout.address_line_width)
        self._text(draw, layout.address_line1, line1, regular, layout.text_size)
        if line2:
            self._text(draw, layout.address_line2, line2, regular, layout.text_size)

        discount = layout.discount_label.format(discount=card.discount)
        valid_till = layout.valid_till_label.format(valid_till=card.valid_till)
        self._text(draw, layout.discount, discount, bold, layout.emphasis_size)
        self._text(draw, layout.valid_till, valid_till, bold, layout.emphasis_size)

        if layout.qr_box is not None:
            x, y, side = layout.qr_box
            canvas.paste(make_qr_image(qr_payload(card), side), (x, y))

        return RenderedCard(image=canvas, filename=layout.download_name)

    def _base(self, background: Image.Image | None) -> Image.Image:
        layout = self.layout

        if background is not None:
            return background.convert("RGB").resize(layout.size, Image.Resampling.LANCZOS)

        canvas = Image.new("RGB", layout.size, layout.fallback_fill)
        draw = ImageDraw.Draw(canvas)
        title_font = get_font(layout.fallback_title_size, bold=True)
        self._text(
            draw,
            layout.fallback_title_at,
            layout.fallback_title,
            title_font,
            layout.fallback_title_size,
            fill=layout.fallback_title_color,
        )
        return canvas

    def _text(
        self,
        draw: ImageDraw.ImageDraw,
        at: Point,
        text: str,
        font: Font,
        size: int,
        fill: str | None = None,
    ) -> None:
        fill = fill or self.layout.text_color
        if isinstance(font, ImageFont.FreeTypeFont):
            draw.text(at, text, font=font, fill=fill, anchor="ls")
        else:
            # Bitmap fonts have no baseline anchor
            x, y = at
            draw.text((x, y - size), text, font=font, fill=fill)
