import pytest

from repodocs.errors import InvalidUrlError
from repodocs.ingestion.identifiers import (
    identifier_slug,
    repository_identifier,
    repository_name,
)


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://github.com/org/repo", "org/repo"),
        ("https://github.com/org/repo.git", "org/repo"),
        ("https://github.com/org/repo/", "org/repo"),
        ("git@github.com:org/repo.git", "org/repo"),
        ("ssh://git@example.com/group/sub/repo.git", "sub/repo"),
        ("file:///srv/git/demo.git", "git/demo"),
        ("https://example.com/repo", "repo"),
    ],
)
def test_repository_identifier(url: str, expected: str) -> None:
    assert repository_identifier(url) == expected


@pytest.mark.parametrize(
    "url",
    [
        "",
        "not a url",
        "ftp://example.com/org/repo",
        "https://",
        "https://example.com/",
        "https://example.com/org/re po",
        "https://example.com/org/repo?tab=readme",
    ],
)
def test_repository_identifier_rejects_invalid_urls(url: str) -> None:
    with pytest.raises(InvalidUrlError):
        repository_identifier(url)


def test_slug_and_name() -> None:
    assert identifier_slug("org/repo") == "org__repo"
    assert repository_name("org/repo") == "repo"
    assert repository_name("repo") == "repo"


def test_slugs_of_underscored_names_do_not_collide() -> None:
    first = identifier_slug("a__b/c")
    second = identifier_slug("a/b__c")
    assert first != second
    assert first == "a%5F%5Fb__c"
    assert identifier_slug("org/my_repo") == "org__my%5Frepo"
