# utils.py
import re
import uuid

TITLE_PLACEHOLDER = "Imported Quiz"
# Slug suffixes the platform appends to set URLs
KNOWN_SLUG_SUFFIXES = ("-flash-cards", "-flashcards")


def title_from_slug(slug: str) -> str:
    """'biology-flash-cards' -> 'Biology'; empty slug -> placeholder."""
    slug = (slug or "").strip().strip("/").lower()
    for suffix in KNOWN_SLUG_SUFFIXES:
        if slug.endswith(suffix):
            slug = slug[: -len(suffix)]
            break
    words = [w for w in re.split(r"[-_\s]+", slug) if w]
    if not words:
        return TITLE_PLACEHOLDER
    return " ".join(w[:1].upper() + w[1:] for w in words)


def strip_code_fences(content: str) -> str:
    # Some models wrap JSON in ``` blocks; strip if present
    content = content.strip()
    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else ""
        if content.rstrip().endswith("```"):
            content = content.rstrip()[:-3]
    return content.strip()


def new_correlation_id() -> str:
    return uuid.uuid4().hex


def schema_violations(err) -> list[dict]:
    """Flatten a pydantic ValidationError into [{path, message}] for error details."""
    return [
        {"path": ".".join(str(p) for p in e["loc"]) or "$", "message": e["msg"]}
        for e in err.errors()
    ]
