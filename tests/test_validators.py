"""
Unit tests for slug and email validation
"""
import pytest

from core.validators import generate_slug, is_valid_slug, validate_email, validate_slug


class TestSlugs:

    @pytest.mark.parametrize("name,slug", [
        ("Acme Corp", "acme-corp"),
        ("  Data  Science ", "data-science"),
        ("R&D / Ops", "rd-ops"),
        ("snake_case_name", "snake-case-name"),
        ("--Edge--", "edge"),
    ])
    def test_generate_slug(self, name, slug):
        assert generate_slug(name) == slug

    @pytest.mark.parametrize("slug", ["acme", "acme-corp", "team-42"])
    def test_valid_slugs(self, slug):
        assert is_valid_slug(slug)
        assert validate_slug(slug) == slug

    @pytest.mark.parametrize("slug", ["", "Acme", "acme corp", "-acme", "acme-", "acme--corp", "acme_corp"])
    def test_invalid_slugs(self, slug):
        assert not is_valid_slug(slug)
        with pytest.raises(ValueError):
            validate_slug(slug)


class TestEmails:

    def test_normalizes_case(self):
        assert validate_email("Jane.Doe@Example.COM") == "jane.doe@example.com"

    @pytest.mark.parametrize("email", [
        "plainaddress",
        "@example.com",
        "jane@",
        "jane..doe@example.com",
        ".jane@example.com",
        "jane.@example.com",
        "jane@.example.com",
        "jane@example",
    ])
    def test_invalid_emails(self, email):
        with pytest.raises(ValueError):
            validate_email(email)
