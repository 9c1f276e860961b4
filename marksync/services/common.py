def clean_text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()
