"""
Input validation utilities
"""
import re


SLUG_REGEX = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def generate_slug(name: str) -> str:
    """Generate URL-friendly slug from a display name"""
    slug = name.lower().strip()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"[-\s_]+", "-", slug)
    return slug.strip("-")


def is_valid_slug(slug: str) -> bool:
    return bool(slug) and bool(SLUG_REGEX.match(slug))


def validate_slug(slug: str) -> str:
    if not is_valid_slug(slug):
        raise ValueError("Slug must contain only lowercase letters, numbers, and hyphens")
    return slug


def validate_email(email: str) -> str:
    """
    Validate email format and normalise its case
    """
    if ".." in email or email.startswith(".") or "@." in email or ".@" in email:
        raise ValueError("Invalid email format")

    if not EMAIL_REGEX.match(email):
        raise ValueError("Invalid email format")

    return email.strip().lower()
