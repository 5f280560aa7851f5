# storefront/utils/text.py
import unicodedata


def fold(value) -> str:
    """Lower-case, trim and strip Vietnamese diacritics ("Đã hủy" -> "da huy")."""
    if value is None:
        return ""
    text = str(value).strip().lower().replace("đ", "d")
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))
