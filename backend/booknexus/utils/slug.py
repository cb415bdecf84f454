"""URL-safe identifiers for authors, publishers and series."""

_SEPARATORS = {" ", "-", "_"}


def slugify(name: str) -> str:
    """
    Convert a display name into a slug.

    Lower-cases the name, keeps [a-z0-9], turns spaces, hyphens and underscores
    into "-", drops everything else, collapses repeated "-" and trims them from
    both ends. Returns "" when nothing survives; callers store that as NULL.

    Example:
        slugify("O'Brien & Sons") -> "obrien-sons"
    """
    chars = []
    for ch in name.lower():
        if ("a" <= ch <= "z") or ("0" <= ch <= "9"):
            chars.append(ch)
        elif ch in _SEPARATORS:
            # collapse runs as we go
            if chars and chars[-1] == "-":
                continue
            chars.append("-")
    return "".join(chars).strip("-")
