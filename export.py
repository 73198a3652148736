"""Print-ready output for a composited card."""

from io import BytesIO

from config import PDF_PAGE_HEIGHT_PT, PDF_PAGE_WIDTH_PT


def card_png_bytes(card_img: "Image.Image") -> bytes:
    buf = BytesIO()
    card_img.convert("RGB").save(buf, format="PNG")
    return buf.getvalue()


def card_pdf_bytes(card_img: "Image.Image") -> bytes:
    """
    Create a single-page PDF (bytes) from a card image (no filesystem writes).

    The page is 5x7 inches, the same 5:7 ratio as the render surface, so the
    3000x4200 card lands at 600 DPI without distortion.
    """
    from reportlab.lib.utils import ImageReader
    from reportlab.pdfgen import canvas

    img = card_img.convert("RGB")
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=(PDF_PAGE_WIDTH_PT, PDF_PAGE_HEIGHT_PT))
    c.drawImage(ImageReader(img), 0, 0, width=PDF_PAGE_WIDTH_PT, height=PDF_PAGE_HEIGHT_PT)
    c.showPage()
    c.save()
    return buf.getvalue()
