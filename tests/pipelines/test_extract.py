import json

from pipelines.ingest.extract import (
    MAX_PORTFOLIO_COMPANIES,
    extract_company_name,
    extract_directory_companies,
    extract_external_website,
    extract_json_ld_names,
    extract_meta_description,
    extract_portfolio_companies,
    name_from_domain,
    parse_html,
)
from pipelines.ingest.sources import DEFAULT_SOURCE_CONFIG


def test_title_leading_marker():
    assert extract_company_name("Announcing Periodic Labs") == "Periodic Labs"


def test_title_verb_marker():
    assert extract_company_name("Reflection AI raises $130M to build superintelligence") == "Reflection AI"
    assert (
        extract_company_name("Thinking Machines emerges from stealth with a record seed")
        == "Thinking Machines"
    )


def test_title_separator():
    assert extract_company_name("World Labs: spatial intelligence for everyone") == "World Labs"


def test_title_candidate_longer_than_five_words_is_rejected():
    assert extract_company_name("The very long name of a company raises money") is None


def test_title_without_pattern():
    assert extract_company_name("weekly roundup of ai news") is None
    assert extract_company_name("") is None


def test_name_from_domain_splits_known_suffix():
    assert name_from_domain("https://www.periodiclabs.ai/") == "Periodic Labs"
    assert name_from_domain("https://acme-robotics.com/about") == "Acme Robotics"
    assert name_from_domain("https://localhost/") is None


def test_meta_description_prefers_name_then_og():
    soup = parse_html(
        '<html><head><meta property="og:description" content="og text">'
        '<meta name="description" content="plain text"></head></html>'
    )
    assert extract_meta_description(soup) == "plain text"
    og_only = parse_html('<html><head><meta property="og:description" content="og"></head></html>')
    assert extract_meta_description(og_only) == "og"


def test_json_ld_names_walk_nested_graph_and_skip_publishers():
    payload = {
        "@context": "https://schema.org",
        "@graph": [
            {"@type": "NewsArticle", "publisher": {"@type": "Organization", "name": "TechCrunch"}},
            {
                "@type": "NewsArticle",
                "about": [{"@type": "Organization", "name": "Periodic Labs"}],
                "mentions": {"@type": ["Organization", "Thing"], "name": "TechCrunch"},
            },
        ],
    }
    html = (
        '<script type="application/ld+json">' + json.dumps(payload) + "</script>"
        '<script type="application/ld+json">{not json</script>'
    )
    names = extract_json_ld_names(parse_html(html), DEFAULT_SOURCE_CONFIG.publisher_denylist)
    assert names == ["Periodic Labs"]


def test_external_website_prefers_visit_link():
    html = """
    <a href="/about">About</a>
    <a href="https://twitter.com/acme">Twitter</a>
    <a href="https://techcrunch.com/other">Other story</a>
    <a href="https://acme.ai/careers">Careers at a company with a fairly long anchor text here</a>
    <a href="https://acme.ai/">Visit website</a>
    """
    website = extract_external_website(
        parse_html(html), "https://techcrunch.com/2025/01/01/acme", DEFAULT_SOURCE_CONFIG
    )
    assert website == "https://acme.ai/"


def test_portfolio_companies_score_card_text_and_cap():
    cards = "".join(
        f'<li><a href="https://company{index}.com" aria-label="Company {index}">x</a>'
        "AI research lab</li>"
        for index in range(MAX_PORTFOLIO_COMPANIES + 5)
    )
    html = (
        f"<ul>{cards}</ul>"
        '<div><a href="https://plain.com">Plain Co</a>bakery</div>'
        '<a href="https://a16z.com/team">Team</a>'
    )
    companies = extract_portfolio_companies(
        parse_html(html), "https://a16z.com/portfolio/", DEFAULT_SOURCE_CONFIG
    )
    assert len(companies) == MAX_PORTFOLIO_COMPANIES
    assert all(company.score >= 1 for company in companies)
    assert "Plain Co" not in {company.name for company in companies}


def test_directory_companies_follow_profile_paths():
    html = """
    <div><a href="/startups/acme-lab">Acme Lab</a> AI research startup</div>
    <div><a href="/startups/acme-lab-2">Acme Lab</a> AI research startup</div>
    <div><a href="/startups">Startups</a></div>
    <div><a href="/blog/post">Acme Blog</a> AI lab</div>
    """
    companies = extract_directory_companies(parse_html(html), "https://seedtable.com/list")
    assert [company.name for company in companies] == ["Acme Lab"]
    assert companies[0].website_url is None
