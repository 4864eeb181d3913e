import bleach


def clean_text(value) -> str:
    """Strip every HTML tag from free text typed by staff."""
    return bleach.clean(str(value or '').strip(), tags=set(), attributes={}, strip=True)
