"""Caption overlays.

Each caption cue is drawn once into a transparent full-frame PNG; the
compositor overlays it for the cue's time window.
"""

import textwrap
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

from reelforge.render.timeline_builder import CaptionCue

TEXT_COLOR = (255, 255, 255, 255)
STROKE_COLOR = (0, 0, 0, 255)
BOTTOM_MARGIN_RATIO = 0.18
LINE_SPACING = 8

FONT_CANDIDATES = [
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Bold.ttc",
    "/usr/share/fonts/truetype/noto/NotoSansCJK-Bold.ttc",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    "/System/Library/Fonts/Helvetica.ttc",
]


@dataclass
class CaptionOverlay:
    image_path: str
    start_time: float
    end_time: float


def _get_font(size: int, font_path: str = "") -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    candidates = [font_path] if font_path else []
    candidates.extend(FONT_CANDIDATES)
    for path in candidates:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            continue
    return ImageFont.load_default()


def render_caption_image(
    text: str,
    output_path: str,
    width: int,
    height: int,
    font_size: int = 64,
    font_path: str = "",
) -> Path:
    """Draw ``text`` centred near the bottom of a transparent frame."""
    image = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(image)
    font = _get_font(font_size, font_path)
    stroke = max(2, font_size // 16) if isinstance(font, ImageFont.FreeTypeFont) else 0

    # Roughly 0.55em per glyph
    chars_per_line = max(8, int(width * 0.9 / max(font_size * 0.55, 1)))
    lines = textwrap.wrap(text, width=chars_per_line) or [""]

    line_boxes = [draw.textbbox((0, 0), line, font=font, stroke_width=stroke) for line in lines]
    line_heights = [box[3] - box[1] for box in line_boxes]
    block_height = sum(line_heights) + LINE_SPACING * (len(lines) - 1)

    y = height - int(height * BOTTOM_MARGIN_RATIO) - block_height
    for line, box, line_height in zip(lines, line_boxes, line_heights):
        line_width = box[2] - box[0]
        x = (width - line_width) // 2
        draw.text(
            (x, y),
            line,
            font=font,
            fill=TEXT_COLOR,
            stroke_width=stroke,
            stroke_fill=STROKE_COLOR,
        )
        y += line_height + LINE_SPACING

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    image.save(path, "PNG")
    return path


def render_caption_overlays(
    cues: list[CaptionCue],
    output_dir: str,
    width: int,
    height: int,
    font_size: int = 64,
    font_path: str = "",
) -> list[CaptionOverlay]:
    overlays: list[CaptionOverlay] = []
    for index, cue in enumerate(cues):
        if not cue.text.strip() or cue.end_time <= cue.start_time:
            continue
        path = render_caption_image(
            cue.text,
            str(Path(output_dir) / f"caption_{index:03d}.png"),
            width,
            height,
            font_size=font_size,
            font_path=font_path,
        )
        overlays.append(CaptionOverlay(str(path), cue.start_time, cue.end_time))
    return overlays
