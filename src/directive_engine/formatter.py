"""
Context Block Formatter.

Renders the budgeted directive selection into the markdown block handed to
the coding assistant, plus the citations that point back to source rules.

Layout:
    ## 📋 Project Context
    **Layer**: ... | **Topics**: ...
    **Confidence**: ... | **Directives**: N

    ### 🔴 MUST Requirements
    1. directive text
       *Rationale*: ...
       *Source*: rule → section
    ### 🟡 SHOULD Recommendations
    ### 🟢 MAY Options
"""

import re
from typing import Optional, Sequence

from directive_engine.models import (
    Citation,
    Directive,
    DirectiveSeverity,
    RankedDirective,
    TaskContext,
)

HEADER = "## 📋 Project Context"

SEVERITY_SECTIONS = (
    (DirectiveSeverity.MUST, "### 🔴 MUST Requirements"),
    (DirectiveSeverity.SHOULD, "### 🟡 SHOULD Recommendations"),
    (DirectiveSeverity.MAY, "### 🟢 MAY Options"),
)

EMPTY_MESSAGE = "No specific directives found for this context."

BASELINE_DIRECTIVES = (
    "**MUST** Validate all user input and sanitize data before processing",
    "**MUST** Use parameterized queries for database operations",
    "**MUST** Handle errors without exposing sensitive information",
)

# (trigger words, directives) added when any trigger appears in the task text
BASELINE_EXTRAS = (
    (
        ("api", "endpoint", "route"),
        (
            "**MUST** Enforce authentication and authorization on API endpoints",
            "**SHOULD** Use consistent HTTP status codes and response formats",
        ),
    ),
    (
        ("database", "data", "model"),
        (
            "**MUST** Use transactions for multi-step database operations",
            "**SHOULD** Index columns used by frequent queries",
        ),
    ),
    (
        ("ui", "component", "interface"),
        (
            "**MUST** Meet accessibility requirements (WCAG 2.1 AA)",
            "**SHOULD** Support multiple screen sizes",
        ),
    ),
)

BASELINE_GENERAL = (
    "**SHOULD** Write unit tests for core functionality",
    "**SHOULD** Follow the naming and formatting conventions of the surrounding code",
    "**MAY** Document complex logic",
)


def _layer_label(context: TaskContext) -> str:
    if context.layer is None or context.layer.is_wildcard:
        return "General (all layers)"
    return context.layer.value


def _format_header(context: TaskContext, directive_count: int) -> str:
    topics = f" | **Topics**: {', '.join(context.topics)}" if context.topics else ""
    return (
        f"{HEADER}\n\n"
        f"**Layer**: {_layer_label(context)}{topics}\n"
        f"**Confidence**: {context.confidence:.0%} | **Directives**: {directive_count}\n"
    )


def _indent_block(text: str, prefix: str = "   ") -> str:
    return "\n".join(f"{prefix}{line}" if line else line for line in text.splitlines())


def format_directive(directive: Directive, index: int, include_details: bool = True) -> str:
    """
    Format one directive as a numbered markdown list item.

    Args:
        directive: Directive (or RankedDirective) to render
        index: 1-based position within its severity section
        include_details: Include rationale, example and anti-pattern

    Returns:
        Markdown for the list item, newline terminated
    """
    parts = [f"{index}. {directive.text}\n"]

    if include_details:
        if directive.rationale:
            parts.append(f"   *Rationale*: {directive.rationale}\n")
        if directive.example:
            parts.append("   *Example*:\n   ```\n")
            parts.append(_indent_block(directive.example) + "\n")
            parts.append("   ```\n")
        if directive.anti_pattern:
            parts.append("   *Anti-pattern*:\n   ```\n")
            parts.append(_indent_block(directive.anti_pattern) + "\n")
            parts.append("   ```\n")

    source = directive.rule_name or directive.rule_id
    if directive.section:
        source = f"{source} → {directive.section}"
    if source:
        parts.append(f"   *Source*: {source}\n")

    return "".join(parts)


def format_context_block(
    selected: Sequence[RankedDirective],
    context: TaskContext,
    include_details: bool = True,
) -> str:
    """
    Assemble the context block for a query result.

    Directives are grouped MUST, SHOULD, MAY; ranked order is preserved
    within each group.

    Args:
        selected: Directives chosen by the token budget allocator
        context: Detected task context (rendered in the header)
        include_details: Include rationale, example and anti-pattern

    Returns:
        Markdown context block
    """
    output_parts = [_format_header(context, len(selected))]

    if not selected:
        output_parts.append(f"\n**Status**: {EMPTY_MESSAGE}\n")
        output_parts.append("Apply general best practices for this layer.\n")
        return "".join(output_parts)

    # =========================================================================
    # SEVERITY SECTIONS
    # =========================================================================
    for severity, title in SEVERITY_SECTIONS:
        group = [d for d in selected if d.severity is severity]
        if not group:
            continue
        output_parts.append(f"\n{title}\n\n")
        for index, directive in enumerate(group, 1):
            output_parts.append(format_directive(directive, index, include_details))

    return "".join(output_parts)


def baseline_directives(task_text: str = "") -> list[str]:
    """General-purpose directives, extended by trigger words found in the task text."""
    words = set(re.findall(r"\w+", (task_text or "").lower()))
    directives = list(BASELINE_DIRECTIVES)
    for triggers, extras in BASELINE_EXTRAS:
        if words.intersection(triggers):
            directives.extend(extras)
    directives.extend(BASELINE_GENERAL)
    return directives


def format_fallback_block(task_text: str = "", reason: Optional[str] = None) -> str:
    """
    Baseline context block used when the retrieval pipeline fails.

    Args:
        task_text: Original task description (selects extra baseline directives)
        reason: Optional short failure description shown to the reader

    Returns:
        Markdown context block with general-purpose directives
    """
    output_parts = [f"{HEADER} (Fallback Mode)\n\n"]
    output_parts.append("**Status**: Limited context available, directive retrieval failed\n")
    if reason:
        output_parts.append(f"**Reason**: {reason}\n")
    output_parts.append("\n### 🔴 Essential Guidelines\n\n")
    for index, text in enumerate(baseline_directives(task_text), 1):
        output_parts.append(f"{index}. {text}\n")
    return "".join(output_parts)


def build_citations(selected: Sequence[Directive]) -> list[Citation]:
    """
    Citations for the selected directives, one per (rule_id, section).

    First-seen order is kept so citations follow ranking order.
    """
    seen: set[tuple[str, str]] = set()
    citations = []
    for directive in selected:
        key = (directive.rule_id, directive.section)
        if key in seen:
            continue
        seen.add(key)
        citations.append(Citation.from_directive(directive))
    return citations
