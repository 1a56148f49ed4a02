from docstore.extraction.base import BaseTextExtractor


class PlainTextAdapter(BaseTextExtractor):
    """Decodes plain-text uploads. UTF-8 first, then Latin-1 for legacy files."""

    def extract(self, data: bytes) -> str:
        try:
            return data.decode("utf-8-sig").strip()
        except UnicodeDecodeError:
            return data.decode("latin-1").strip()
