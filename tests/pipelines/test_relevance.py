from pipelines.ingest.relevance import (
    INTERROGATIVE_PENALTY,
    is_likely_company_name,
    score_relevance,
)


def test_positive_phrases_add_weight():
    result = score_relevance("Stealth AI lab raises seed round")
    assert result.score > 0
    assert "+4:ai lab" in result.reasons
    assert "+2:stealth" in result.reasons
    assert "+3:raises" in result.reasons


def test_repeated_phrase_counts_once():
    single = score_relevance("research lab")
    repeated = score_relevance("research lab research lab research lab")
    assert single.score == repeated.score


def test_negative_phrases_subtract_weight():
    result = score_relevance("Supreme Court rules on government AI plans")
    assert result.score < 0
    assert any(reason.startswith("-8:supreme court") for reason in result.reasons)


def test_interrogative_title_is_penalized():
    plain = score_relevance("Building a research lab")
    question = score_relevance("How to build a research lab")
    assert plain.score - question.score == INTERROGATIVE_PENALTY
    assert "-2:how/why/what" in question.reasons


def test_snippet_contributes_to_score():
    without = score_relevance("Acme announces news")
    with_snippet = score_relevance("Acme announces news", "The AI research lab raised funding")
    assert with_snippet.score > without.score


def test_empty_text_scores_zero():
    assert score_relevance(None, None) == (0, ["empty"])
    assert score_relevance("   ", "") == (0, ["empty"])


def test_scoring_is_case_and_whitespace_insensitive():
    assert score_relevance("AI   LAB") == score_relevance("ai lab")


def test_company_name_likelihood():
    assert is_likely_company_name("Periodic Labs")
    assert not is_likely_company_name("")
    assert not is_likely_company_name("x" * 61)
    assert not is_likely_company_name("one two three four five six seven")
    assert not is_likely_company_name("Supreme Court")
    assert not is_likely_company_name("Waymo")
