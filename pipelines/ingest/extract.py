"""Company-name extraction from titles, domains and HTML pages."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup, Tag

from labwatch.normalize import get_hostname, normalize_name, normalize_whitespace
from pipelines.ingest.relevance import is_likely_company_name, score_relevance
from pipelines.ingest.sources import SourceConfig

MIN_PORTFOLIO_SCORE = 1
MAX_PORTFOLIO_COMPANIES = 60
MAX_DIRECTORY_COMPANIES = 80
MAX_TITLE_CANDIDATE_WORDS = 5

LEADING_MARKERS = (
    "announcing",
    "introducing",
    "introducing the",
    "meet",
    "backing",
    "investing in",
    "launching",
)

VERB_MARKERS = (
    "raises",
    "raised",
    "lands",
    "lands a",
    "closes",
    "secures",
    "snags",
    "announces",
    "announcing",
    "launches",
    "debuts",
    "unveils",
    "introduces",
    "introducing",
    "introducing the",
    "releases",
    "opens",
    "spins",
    "acquires",
    "buys",
    "backs",
    "backing",
    "invests in",
    "investing in",
    "funds",
    "emerges from stealth",
    "funding",
    "seed",
    "series",
    "round",
)

TITLE_SEPARATORS = (":", " - ", " | ")

DOMAIN_SUFFIXES = ("labs", "lab", "ai", "research", "intelligence", "math")
DOMAIN_STOP_WORDS = frozenset(
    {"www", "home", "homepage", "index", "blog", "news", "app", "site", "official"}
)

PORTFOLIO_STOP_TEXT = frozenset(
    {"learn more", "read more", "portfolio", "careers", "about", "contact", "privacy", "terms"}
)
DIRECTORY_PATH_HINTS = ("/startup", "/startups", "/company", "/companies", "/organization", "/org", "/profile")
DIRECTORY_STOP_TEXT = frozenset(
    {
        "startups",
        "startup",
        "companies",
        "company",
        "directory",
        "view",
        "see more",
        "learn more",
        "read more",
    }
)
JSON_LD_NESTED_FIELDS = ("mentions", "about", "mainEntityOfPage", "mainEntity")

_QUOTES = re.compile(r"[“”\"']")
_TRAILING_CLAUSE = re.compile(r"\s+[-—]\s+.*$")


@dataclass(frozen=True)
class ListedCompany:
    """A company linked from a portfolio or directory page."""

    name: str
    website_url: str | None
    score: int


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def _clean_title_candidate(value: str) -> str:
    return normalize_whitespace(_TRAILING_CLAUSE.sub("", _QUOTES.sub("", value)).strip())


def _short_enough(candidate: str) -> bool:
    return bool(candidate) and len(candidate.split(" ")) <= MAX_TITLE_CANDIDATE_WORDS


def extract_company_name(title: str | None) -> str | None:
    """Pull a company name out of a headline by marker and separator patterns."""
    trimmed = normalize_whitespace(title or "")
    if not trimmed:
        return None
    lower = trimmed.lower()

    for marker in LEADING_MARKERS:
        if lower.startswith(f"{marker} "):
            candidate = _clean_title_candidate(trimmed[len(marker):].strip())
            if _short_enough(candidate):
                return candidate

    for marker in VERB_MARKERS:
        index = lower.find(f" {marker} ")
        if index > 1:
            candidate = _clean_title_candidate(trimmed[:index])
            if _short_enough(candidate):
                return candidate

    for separator in TITLE_SEPARATORS:
        index = trimmed.find(separator)
        if index > 0:
            candidate = _clean_title_candidate(trimmed[:index])
            if _short_enough(candidate):
                return candidate
    return None


def name_from_domain(url: str) -> str | None:
    """Infer a display name from the second-level domain label."""
    host = get_hostname(url)
    if not host:
        return None
    parts = host.split(".")
    if len(parts) < 2 or not parts[-2]:
        return None

    label = parts[-2]
    for suffix in DOMAIN_SUFFIXES:
        if label.endswith(suffix) and len(label) > len(suffix) + 1:
            label = f"{label[: -len(suffix)]} {suffix}"
            break

    cleaned = re.sub(r"\d+", " ", re.sub(r"[-_]+", " ", label)).strip()
    tokens = [token for token in cleaned.split() if token not in DOMAIN_STOP_WORDS]
    if not tokens:
        return None
    return " ".join(token[:1].upper() + token[1:] for token in tokens)


def extract_meta_description(soup: BeautifulSoup) -> str | None:
    for attrs in ({"name": "description"}, {"property": "og:description"}):
        tag = soup.find("meta", attrs=attrs)
        if isinstance(tag, Tag):
            content = tag.get("content")
            if isinstance(content, str):
                return content
    return None


def extract_json_ld_names(soup: BeautifulSoup, publisher_denylist: Iterable[str]) -> list[str]:
    """Organization names embedded in JSON-LD blocks, minus known publishers."""
    denied = {name.lower() for name in publisher_denylist}
    names: dict[str, None] = {}

    def add_name(value: Any) -> None:
        if not isinstance(value, str):
            return
        trimmed = value.strip()
        if trimmed and trimmed.lower() not in denied:
            names.setdefault(trimmed, None)

    def visit(node: Any) -> None:
        if isinstance(node, list):
            for entry in node:
                visit(entry)
            return
        if not isinstance(node, dict):
            return
        node_type = node.get("@type")
        types = node_type if isinstance(node_type, list) else [node_type]
        if any(isinstance(item, str) and item.lower() == "organization" for item in types):
            add_name(node.get("name"))
        for field in JSON_LD_NESTED_FIELDS:
            if node.get(field):
                visit(node[field])
        graph = node.get("@graph")
        if isinstance(graph, list):
            visit(graph)

    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            visit(json.loads(raw))
        except ValueError:
            continue
    return list(names)


def _iter_links(soup: BeautifulSoup, page_url: str) -> Iterable[tuple[Tag, str, str]]:
    """Yield (anchor, absolute_url, host) for every resolvable link."""
    for anchor in soup.select("a[href]"):
        href = anchor.get("href")
        if not isinstance(href, str) or not href.strip():
            continue
        try:
            absolute = urljoin(page_url, href.strip())
        except ValueError:
            continue
        host = get_hostname(absolute)
        if host:
            yield anchor, absolute, host


def _anchor_label(anchor: Tag) -> str:
    for attribute in ("aria-label", "title"):
        value = anchor.get(attribute)
        if isinstance(value, str):
            return value.strip()
    image = anchor.find("img", alt=True)
    if isinstance(image, Tag) and isinstance(image.get("alt"), str):
        return image["alt"].strip()
    return anchor_text(anchor)


def anchor_text(anchor: Tag) -> str:
    return normalize_whitespace(anchor.get_text(" "))


def _card_text(anchor: Tag) -> str:
    card = anchor.find_parent(["article", "li", "section", "div"])
    return normalize_whitespace(card.get_text(" ")) if card else ""


def extract_external_website(soup: BeautifulSoup, page_url: str, config: SourceConfig) -> str | None:
    """Best-scoring outbound link that is neither a news/VC host nor denied."""
    page_host = get_hostname(page_url)
    if not page_host:
        return None
    best: tuple[int, str] | None = None
    for anchor, absolute, host in _iter_links(soup, page_url):
        if host == page_host or config.is_denied(host) or config.is_allowed(host):
            continue
        text = anchor_text(anchor).lower()
        score = 0
        if any(word in text for word in ("website", "home", "visit")):
            score += 2
        if 0 < len(text) <= 40:
            score += 1
        if best is None or score > best[0]:
            best = (score, absolute)
    return best[1] if best else None


def extract_portfolio_companies(
    soup: BeautifulSoup, page_url: str, config: SourceConfig
) -> list[ListedCompany]:
    page_host = get_hostname(page_url)
    if not page_host:
        return []
    companies: list[ListedCompany] = []
    for anchor, absolute, host in _iter_links(soup, page_url):
        if host == page_host or config.is_denied(host) or config.is_allowed(host):
            continue
        name = _anchor_label(anchor)
        if not name or name.lower() in PORTFOLIO_STOP_TEXT or not is_likely_company_name(name):
            continue
        relevance = score_relevance(name, _card_text(anchor))
        companies.append(ListedCompany(name=name, website_url=absolute, score=relevance.score))

    companies.sort(key=lambda company: company.score, reverse=True)
    kept = [company for company in companies if company.score >= MIN_PORTFOLIO_SCORE]
    return kept[:MAX_PORTFOLIO_COMPANIES]


def extract_directory_companies(soup: BeautifulSoup, page_url: str) -> list[ListedCompany]:
    page_host = get_hostname(page_url)
    if not page_host:
        return []
    companies: list[ListedCompany] = []
    seen: set[str] = set()
    for anchor, absolute, host in _iter_links(soup, page_url):
        path = urlsplit(absolute).path.lower()
        if not any(hint in path for hint in DIRECTORY_PATH_HINTS):
            continue
        name = _anchor_label(anchor)
        if not name or name.lower() in DIRECTORY_STOP_TEXT or not is_likely_company_name(name):
            continue
        key = normalize_name(name)
        if not key or key in seen:
            continue
        relevance = score_relevance(name, _card_text(anchor))
        if relevance.score < MIN_PORTFOLIO_SCORE:
            continue
        seen.add(key)
        companies.append(
            ListedCompany(
                name=name,
                website_url=absolute if host != page_host else None,
                score=relevance.score,
            )
        )

    companies.sort(key=lambda company: company.score, reverse=True)
    return companies[:MAX_DIRECTORY_COMPANIES]
