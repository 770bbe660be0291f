import re
import unicodedata

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    """Lowercase ASCII slug, e.g. "São José dos Campos" → "sao-jose-dos-campos"."""
    normalized = unicodedata.normalize("NFKD", (text or "").lower())
    ascii_only = "".join(ch for ch in normalized if not unicodedata.combining(ch))
    return _NON_ALNUM.sub("-", ascii_only).strip("-")
