"""
PDF assembly for finalized PicStory sessions.
"""

from .builder import DocumentAssembler, TextBand, decode_image, layout_text_band, wrap_text

__all__ = ["DocumentAssembler", "TextBand", "decode_image", "layout_text_band", "wrap_text"]
