"""Tests for low-signal filtering, tiering and the output budget."""

from discovery_signals.processing import (
    apply_output_budget,
    filter_low_signal_domains,
    tier_formatted_signals,
)
from discovery_signals.processing.tiering import TIER_TITLES


BROWSER_SECTION = """## Browser Data (chrome)

### Most Active (Last 7 Days)
github.com (200)
stackoverflow.com (120)
claude.ai (2)
tinyblog.net (3)

### Long-term Interests (All-time, excluding recent)
wikipedia.org (90)
oldforum.org (1)

### Content Details

**github.com**
- Pull requests (12)
- Some rare page (1)

**claude.ai**
- Debugging a parser (1)

**tinyblog.net**
- Post (4)"""


def test_filter_drops_low_visit_domains():
    result = filter_low_signal_domains(BROWSER_SECTION)
    assert "github.com (200)" in result
    assert "wikipedia.org (90)" in result
    assert "tinyblog.net" not in result
    assert "oldforum.org" not in result


def test_filter_keeps_ai_chat_sites():
    result = filter_low_signal_domains(BROWSER_SECTION)
    assert "claude.ai (2)" in result
    assert "- Debugging a parser (1)" in result


def test_filter_prunes_rare_titles_for_regular_sites():
    result = filter_low_signal_domains(BROWSER_SECTION)
    assert "- Pull requests (12)" in result
    assert "Some rare page" not in result


def test_filter_without_browser_sections_is_noop():
    text = "## Shell History\n\n### Dev Tools Used\ngit, npm"
    assert filter_low_signal_domains(text) == text


def test_tiering_orders_sections():
    text = "\n\n".join([
        "## System Signals\n\n### Dock\nSafari",
        "## Browser Bookmarks (chrome)\n\n- a",
        "## Active Projects\n\n- repo (/x) (today)",
    ])
    tiered = tier_formatted_signals(text)
    assert tiered.index(TIER_TITLES[0]) < tiered.index("## Active Projects")
    assert tiered.index("## Active Projects") < tiered.index(TIER_TITLES[1])
    assert tiered.index(TIER_TITLES[1]) < tiered.index("## Browser Bookmarks")
    assert tiered.index("## Browser Bookmarks") < tiered.index(TIER_TITLES[2])
    assert tiered.index(TIER_TITLES[2]) < tiered.index("## System Signals")


def test_tiering_omits_empty_tiers():
    tiered = tier_formatted_signals("## Shell History\n\ngit")
    assert tiered.startswith(TIER_TITLES[0])
    assert TIER_TITLES[1] not in tiered
    assert TIER_TITLES[2] not in tiered


def test_budget_noop_when_within_limit():
    assert apply_output_budget("short", 100) == "short"


def test_budget_cuts_at_section_boundaries():
    text = tier_formatted_signals("\n\n".join([
        "## Active Projects\n\n" + "- p\n" * 10,
        "## Browser Bookmarks (chrome)\n\n" + "- b\n" * 200,
    ]))
    budget = text.index("## Browser Bookmarks") + 5
    result = apply_output_budget(text, budget)
    assert len(result) <= budget
    assert "## Active Projects" in result
    assert "## Browser Bookmarks" not in result
    assert not result.rstrip().endswith(TIER_TITLES[1])


def test_budget_hard_truncates_single_oversized_section():
    text = "## Shell History\n\n" + "x" * 500
    assert apply_output_budget(text, 50) == text[:50]
