"""Cover-crop re-encode for uploaded garment images (Pillow)."""
import io
import logging

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

OUTPUT_WIDTH = 768
OUTPUT_HEIGHT = 1024
JPEG_QUALITY = 90


def cover_to_jpeg(data, width=OUTPUT_WIDTH, height=OUTPUT_HEIGHT, quality=JPEG_QUALITY):
    """Scale and center-crop `data` to width x height, flatten onto white, return JPEG bytes.

    Aspect ratio is preserved; the overflowing axis is cropped.
    """
    from PIL import Image, ImageOps

    img = Image.open(io.BytesIO(data))
    img.load()
    img = ImageOps.exif_transpose(img)
    src_w, src_h = img.size
    logger.info("transform before: %sx%s mode=%s", src_w, src_h, img.mode)

    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA")
    fitted = ImageOps.fit(img, (width, height), method=Image.LANCZOS, centering=(0.5, 0.5))

    background = Image.new("RGB", (width, height), (255, 255, 255))
    if fitted.mode == "RGBA":
        background.paste(fitted, (0, 0), fitted)
    else:
        background.paste(fitted, (0, 0))

    out = io.BytesIO()
    background.save(out, format="JPEG", quality=quality)
    logger.info("transform after: %sx%s bytes=%s", width, height, out.tell())
    return out.getvalue()
