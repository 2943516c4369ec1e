from __future__ import annotations

from urllib.parse import quote


def build_favicon_svg(
    glyph: str = "解",
    *,
    background: str = "#080b16",
    text_color: str = "#f8fafc",
) -> str:
    """Return a square SVG badge showing a single glyph."""
    normalized = (glyph or "解").strip()[:1] or "解"
    return f"""<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 64 64" role="img" aria-label="{normalized} icon">
  <rect width="64" height="64" rx="14" ry="14" fill="{background}" />
  <text x="32" y="44" text-anchor="middle" font-family="'Hiragino Sans', 'Noto Sans JP', sans-serif"
        font-size="34" font-weight="700" fill="{text_color}">{normalized}</text>
</svg>"""


def favicon_data_url(glyph: str = "解", **kwargs: str) -> str:
    return "data:image/svg+xml," + quote(build_favicon_svg(glyph, **kwargs))


MOJIKAE_FAVICON_URL = favicon_data_url()


__all__ = ["build_favicon_svg", "favicon_data_url", "MOJIKAE_FAVICON_URL"]
