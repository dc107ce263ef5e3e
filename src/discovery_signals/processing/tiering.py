"""Post-processing of the formatted digest: low-signal pruning and tiering.

Both passes operate on the concatenated Markdown text, after every category
section has been formatted:

- ``filter_low_signal_domains`` drops domains whose visit counts fall below an
  adaptive threshold, and prunes rarely-seen page titles.
- ``tier_formatted_signals`` regroups ``## `` sections into priority tiers so
  the densest signal comes first.
- ``apply_output_budget`` truncates the tiered text at section boundaries,
  so lower tiers are the first to go.
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

# AI chat sites: page titles reveal intent, so they bypass every threshold.
AI_CHAT_SITES = frozenset({
    "chatgpt.com",
    "chat.openai.com",
    "claude.ai",
    "clawdbot.ai",
    "gemini.google.com",
    "chat.deepseek.com",
    "poe.com",
    "perplexity.ai",
    "copilot.microsoft.com",
    "grok.x.ai",
})

ABSOLUTE_MIN_VISITS = 5
RELATIVE_FACTOR = 0.05
TITLE_MIN_COUNT = 3

DOMAIN_SECTION_HEADERS = (
    "### Most Active (Last 7 Days)",
    "### Long-term Interests (All-time, excluding recent)",
)

TIER_1_HEADERS = ("Active Projects", "Browser Data", "Shell History")
TIER_3_HEADERS = ("Apps", "System Signals")

TIER_TITLES = (
    "# Tier 1: Core Signals (highest priority for synthesis)",
    "# Tier 2: Supporting Context",
    "# Tier 3: Supplementary",
)

_DOMAIN_LINE = re.compile(r"^(\S+)\s+\((\d+)\)\s*$")
_TRAILING_COUNT = re.compile(r"\((\d+)\)\s*$")
_BLOCK_DOMAIN = re.compile(r"^\*\*(\S+?)\*\*")
_CONTENT_DETAILS = re.compile(r"(### Content Details\s*\n)(.*?)(?=\n## |\Z)", re.DOTALL)


def _section_pattern(header: str) -> re.Pattern:
    return re.compile(
        "(" + re.escape(header) + r"\s*\n)(.*?)(?=\n###|\n##|\Z)",
        re.DOTALL,
    )


def _low_signal_threshold(counts: list[int]) -> tuple[int, float]:
    top5 = sorted(counts, reverse=True)[:5]
    top5_avg = sum(top5) / len(top5)
    return max(ABSOLUTE_MIN_VISITS, round(top5_avg * RELATIVE_FACTOR)), top5_avg


def filter_low_signal_domains(formatted: str) -> str:
    """Remove low-visit domains from the browser summary sections.

    Threshold is ``max(5, round(top5_avg * 0.05))`` where ``top5_avg`` is the
    average visit count of the five busiest domains. AI chat sites are always
    kept. In ``### Content Details`` the blocks of dropped domains go away and,
    for non-chat sites, titles seen fewer than three times are pruned.
    """
    domain_counts: dict[str, int] = {}
    for header in DOMAIN_SECTION_HEADERS:
        match = _section_pattern(header).search(formatted)
        if not match:
            continue
        for line in match.group(2).split("\n"):
            m = _DOMAIN_LINE.match(line.strip())
            if m:
                domain, count = m.group(1), int(m.group(2))
                domain_counts[domain] = max(domain_counts.get(domain, 0), count)

    if not domain_counts:
        return formatted

    threshold, top5_avg = _low_signal_threshold(list(domain_counts.values()))

    keep: set[str] = set()
    removed: list[str] = []
    for domain, count in domain_counts.items():
        if count >= threshold or domain in AI_CHAT_SITES:
            keep.add(domain)
        else:
            removed.append(f"{domain} ({count})")

    if removed:
        logger.info(
            "Low-signal threshold %d (top-5 avg %d); removed %d domains: %s",
            threshold, round(top5_avg), len(removed), ", ".join(removed),
        )

    def _filter_body(match: re.Match) -> str:
        lines = []
        for line in match.group(2).split("\n"):
            m = _DOMAIN_LINE.match(line.strip())
            if m and m.group(1) not in keep:
                continue
            lines.append(line)
        return match.group(1) + "\n".join(lines)

    result = formatted
    for header in DOMAIN_SECTION_HEADERS:
        result = _section_pattern(header).sub(_filter_body, result, count=1)

    content = _CONTENT_DETAILS.search(result)
    if content:
        blocks = re.split(r"\n(?=\*\*)", content.group(2))
        kept_blocks = []
        for block in blocks:
            dm = _BLOCK_DOMAIN.match(block)
            if not dm:
                kept_blocks.append(block)
                continue
            domain = dm.group(1)
            if domain not in keep:
                continue
            if domain in AI_CHAT_SITES:
                kept_blocks.append(block)
                continue
            lines = []
            for line in block.split("\n"):
                tm = _TRAILING_COUNT.search(line)
                if tm and int(tm.group(1)) < TITLE_MIN_COUNT:
                    continue
                lines.append(line)
            kept_blocks.append("\n".join(lines))
        result = result[:content.start()] + content.group(1) + "\n".join(kept_blocks) + result[content.end():]

    return result


def _split_sections(formatted: str) -> list[tuple[str, str]]:
    sections = []
    for part in re.split(r"\n(?=## )", formatted):
        trimmed = part.strip()
        if not trimmed:
            continue
        header = re.match(r"^## (.+)", trimmed)
        sections.append((header.group(1).strip() if header else "", trimmed))
    return sections


def tier_formatted_signals(formatted: str) -> str:
    """Regroup ``## `` sections into three priority tiers.

    - Tier 1 (core): Active Projects, Browser Data, Shell History
    - Tier 2 (supporting): everything else
    - Tier 3 (supplementary): Apps, System Signals
    """
    tiers: list[list[str]] = [[], [], []]
    for header, content in _split_sections(formatted):
        if header.startswith(TIER_1_HEADERS):
            tiers[0].append(content)
        elif header.startswith(TIER_3_HEADERS):
            tiers[2].append(content)
        else:
            tiers[1].append(content)

    out = []
    for title, contents in zip(TIER_TITLES, tiers):
        if contents:
            out.append(title + "\n\n" + "\n\n".join(contents))
    return "\n\n".join(out)


def apply_output_budget(formatted: str, max_chars: int) -> str:
    """Cut ``formatted`` to ``max_chars`` at section boundaries.

    Sections are kept in order until the next one would overflow; a first
    section that alone exceeds the budget is hard-truncated.
    """
    if len(formatted) <= max_chars:
        return formatted

    blocks = re.split(r"\n\n(?=#{1,2} )", formatted)
    kept: list[str] = []
    size = 0
    for block in blocks:
        added = len(block) + (2 if kept else 0)
        if size + added > max_chars:
            break
        kept.append(block)
        size += added

    # A tier header whose sections were all cut adds nothing.
    while kept and kept[-1].startswith("# Tier") and "\n## " not in kept[-1]:
        kept.pop()

    if not kept:
        return formatted[:max_chars]

    dropped = len(blocks) - len(kept)
    logger.info("Output budget %d chars: dropped %d trailing sections", max_chars, dropped)
    return "\n\n".join(kept)
