"""Validation for the tool factory pipeline.

- validate_extraction: checks course analysis output
- validate_design_alignment: checks the tool design against the analysis
- validate_tool_output: checks generated HTML against a BuilderContext
- build_builder_context: turns analysis + design into the required-content contract
- build_fix_instructions: renders blocking errors as directives for the next build

Every call returns a fresh ValidationResult; nothing is cached between calls.
"""

import logging
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field

from toolfactory.stages.schemas import (
    BuilderContext,
    Calculation,
    CourseAnalysis,
    ExpertQuote,
    FrameworkItem,
    TermRequirement,
    ToolDesign,
    ToolIdentity,
)

logger = logging.getLogger(__name__)

QUOTE_CHECK_CHARS = 50

# Blocking codes
FRAMEWORK_ITEM_MISSING_IN_HTML = "FRAMEWORK_ITEM_MISSING_IN_HTML"
CRITICAL_TERMINOLOGY_MISSING = "CRITICAL_TERMINOLOGY_MISSING"
EXPERT_QUOTE_MISSING_IN_HTML = "EXPERT_QUOTE_MISSING_IN_HTML"
MISSING_MODULE_TITLE = "MISSING_MODULE_TITLE"
MISSING_NUMBERED_FRAMEWORK = "MISSING_NUMBERED_FRAMEWORK"
INCOMPLETE_FRAMEWORK_ITEMS = "INCOMPLETE_FRAMEWORK_ITEMS"
FRAMEWORK_ITEM_NOT_MAPPED = "FRAMEWORK_ITEM_NOT_MAPPED"

# Advisory codes
TERMINOLOGY_GENERICIZED = "TERMINOLOGY_GENERICIZED"
MISSING_EXPERT_QUOTE = "MISSING_EXPERT_QUOTE"
TERMINOLOGY_NOT_USED = "TERMINOLOGY_NOT_USED"
QUOTE_NOT_PLACED = "QUOTE_NOT_PLACED"


class ValidationIssue(BaseModel):
    code: str
    message: str
    field: str
    expected: str
    actual: str


class ValidationResult(BaseModel):
    stage: Literal["extraction", "design", "output"]
    passed: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def _result(
    stage: Literal["extraction", "design", "output"],
    errors: list[ValidationIssue],
    warnings: list[ValidationIssue],
) -> ValidationResult:
    return ValidationResult(
        stage=stage,
        passed=not errors,
        errors=errors,
        warnings=warnings,
    )


# ── Extraction ──────────────────────────────────────────


def validate_extraction(analysis: CourseAnalysis) -> ValidationResult:
    """Validate course analysis output.

    The analysis must carry a module title and at least one usable structure:
    numbered framework items, two or more terms, two or more framework steps,
    a formula, or go/no-go decision criteria.
    """
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []

    framework = analysis.numbered_framework
    item_count = len(framework.items) if framework else 0
    has_items = item_count > 0
    has_terminology = len(analysis.key_terminology) >= 2
    has_steps = len(analysis.framework_steps) >= 2
    has_formulas = len(analysis.formulas) >= 1
    criteria = analysis.decision_criteria
    has_criteria = bool(criteria and criteria.go_condition and criteria.no_go_condition)
    has_other = has_terminology or has_steps or has_formulas or has_criteria

    if not analysis.module_title.strip():
        errors.append(ValidationIssue(
            code=MISSING_MODULE_TITLE,
            message=(
                "No module title found. The analysis must name the module "
                "(e.g. \"Sprint 6: Cashflow Story Part 1\")."
            ),
            field="module_title",
            expected="Non-empty module title",
            actual=analysis.module_title or "empty",
        ))

    if not (has_items or has_other):
        errors.append(ValidationIssue(
            code=MISSING_NUMBERED_FRAMEWORK,
            message=(
                "No course-specific structure found. Need at least one of: numbered "
                "framework items, 2+ key terms, 2+ framework steps, a formula, "
                "or go/no-go decision criteria."
            ),
            field="numbered_framework",
            expected="At least one structured content element",
            actual=(
                f"items={item_count}, terms={len(analysis.key_terminology)}, "
                f"steps={len(analysis.framework_steps)}, formulas={len(analysis.formulas)}, "
                f"criteria={'yes' if has_criteria else 'no'}"
            ),
        ))

    if framework and framework.framework_name and not has_items:
        issue = ValidationIssue(
            code=INCOMPLETE_FRAMEWORK_ITEMS,
            message=(
                f"Framework \"{framework.framework_name}\" was identified but none of "
                "its items were extracted."
            ),
            field="numbered_framework.items",
            expected="Items with number, name, full_label, definition, tool_input_label",
            actual=f"framework_name=\"{framework.framework_name}\", items=[]",
        )
        # Other structure can still carry the tool
        if has_other:
            warnings.append(issue)
        else:
            errors.append(issue)

    if not analysis.expert_wisdom:
        warnings.append(ValidationIssue(
            code=MISSING_EXPERT_QUOTE,
            message="No expert quotes extracted.",
            field="expert_wisdom",
            expected="At least 1 expert quote",
            actual="0 quotes",
        ))

    result = _result("extraction", errors, warnings)
    logger.info(
        f"[validation] Extraction: passed={result.passed}, "
        f"errors={len(errors)}, warnings={len(warnings)}, framework_items={item_count}"
    )
    return result


# ── Design alignment ────────────────────────────────────


def validate_design_alignment(analysis: CourseAnalysis, design: ToolDesign) -> ValidationResult:
    """Validate that the tool design maps the analyzed course elements."""
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []

    items = analysis.numbered_framework.items if analysis.numbered_framework else []
    input_labels = [(i.label or "").lower() for i in design.inputs]

    if items and len(design.inputs) < len(items):
        for item in items:
            wanted = (item.tool_input_label or item.name).lower()
            name = item.name.lower()
            if any(wanted in label or name in label for label in input_labels):
                continue
            errors.append(ValidationIssue(
                code=FRAMEWORK_ITEM_NOT_MAPPED,
                message=(
                    f"Framework item \"{item.name}\" (#{item.number}) has no tool input. "
                    f"The design needs inputs for all {len(items)} framework items."
                ),
                field="inputs",
                expected=item.tool_input_label or item.name,
                actual="No matching input found",
            ))

    if analysis.key_terminology:
        labels_and_help = " ".join(
            f"{i.label} {i.help_text or ''}".lower() for i in design.inputs
        )
        unused = [
            t.term for t in analysis.key_terminology
            if t.term and t.term.lower() not in labels_and_help
        ]
        if unused:
            warnings.append(ValidationIssue(
                code=TERMINOLOGY_NOT_USED,
                message=(
                    "Course terminology not used in input labels or help text: "
                    + ", ".join(f"\"{term}\"" for term in unused)
                ),
                field="inputs.label",
                expected=", ".join(t.term for t in analysis.key_terminology),
                actual=f"Unused: {', '.join(unused)}",
            ))

    if analysis.expert_wisdom and design.expert_quote_to_display is None:
        first = analysis.expert_wisdom[0]
        warnings.append(ValidationIssue(
            code=QUOTE_NOT_PLACED,
            message=(
                f"Expert quote not placed in the design: \"{first.quote[:60]}...\" "
                f"({first.source or 'unknown source'})"
            ),
            field="expert_quote_to_display",
            expected="Quote to display in the results section",
            actual="Not specified",
        ))

    result = _result("design", errors, warnings)
    logger.info(
        f"[validation] Design alignment: passed={result.passed}, errors={len(errors)}, "
        f"warnings={len(warnings)}, framework_items={len(items)}, inputs={len(design.inputs)}"
    )
    return result


# ── Output ──────────────────────────────────────────────


def _label_present(label: str, html_lower: str) -> bool:
    label_lower = label.lower()
    if label_lower in html_lower:
        return True
    if ":" in label_lower:
        key_part = label_lower.rsplit(":", 1)[1].strip()
        if key_part and key_part in html_lower:
            return True
    return False


def _is_critical(term_lower: str, context: BuilderContext) -> bool:
    return any(
        term_lower in item.label.lower() or term_lower in item.definition.lower()
        for item in context.framework_items
    )


def validate_tool_output(html: str, context: BuilderContext) -> ValidationResult:
    """Validate that generated HTML carries the required content.

    Args:
        html: Generated artifact
        context: Required-content contract

    Returns:
        ValidationResult; passed is False iff there is at least one blocking error
    """
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []
    html_lower = html.lower()

    for item in context.framework_items:
        if not item.label:
            continue
        if not _label_present(item.label, html_lower):
            errors.append(ValidationIssue(
                code=FRAMEWORK_ITEM_MISSING_IN_HTML,
                message=(
                    f"Framework item \"{item.label}\" not found in generated HTML. "
                    "The tool must include every framework item with its exact wording."
                ),
                field=f"framework_items[{item.index}]",
                expected=item.label,
                actual="Not found in HTML",
            ))

    for term in context.terminology:
        if not term.term:
            continue
        term_lower = term.term.lower()
        if term_lower in html_lower:
            continue
        if _is_critical(term_lower, context):
            errors.append(ValidationIssue(
                code=CRITICAL_TERMINOLOGY_MISSING,
                message=(
                    f"Critical course term \"{term.term}\" not found in generated HTML. "
                    "It is required because it appears in the framework."
                ),
                field=f"terminology.{term.term}",
                expected=term.term,
                actual="Not found in HTML",
            ))
        else:
            warnings.append(ValidationIssue(
                code=TERMINOLOGY_GENERICIZED,
                message=f"Course term \"{term.term}\" may have been genericized.",
                field=f"terminology.{term.term}",
                expected=term.term,
                actual="Term may be missing or genericized",
            ))

    if context.expert_quote and context.expert_quote.quote:
        prefix = context.expert_quote.quote[:QUOTE_CHECK_CHARS]
        if prefix.lower() not in html_lower:
            errors.append(ValidationIssue(
                code=EXPERT_QUOTE_MISSING_IN_HTML,
                message=(
                    f"Expert quote from {context.expert_quote.source or 'the course'} "
                    "not displayed in the tool."
                ),
                field="expert_quote",
                expected=prefix,
                actual="Not found in HTML",
            ))

    result = _result("output", errors, warnings)
    logger.info(
        f"[validation] Output: passed={result.passed}, errors={len(errors)}, "
        f"warnings={len(warnings)}, framework_items={len(context.framework_items)}, "
        f"has_quote={context.expert_quote is not None}"
    )
    return result


def build_fix_instructions(result: ValidationResult) -> list[str]:
    """Render a validation's blocking errors as directives for the next build.

    Built from the given result only, so the list shrinks as errors are fixed.
    """
    instructions = []
    for error in result.errors:
        if error.code == FRAMEWORK_ITEM_MISSING_IN_HTML:
            instructions.append(
                f"Include the exact framework item label \"{error.expected}\" as visible text."
            )
        elif error.code == CRITICAL_TERMINOLOGY_MISSING:
            instructions.append(
                f"Use the exact term \"{error.expected}\" in a label or help text; do not paraphrase it."
            )
        elif error.code == EXPERT_QUOTE_MISSING_IN_HTML:
            instructions.append(
                f"Display the expert quote verbatim, starting with \"{error.expected}\"."
            )
        else:
            instructions.append(f"Include the exact text \"{error.expected}\".")
    return instructions


# ── Builder context ─────────────────────────────────────


def _usage_hint(how_to_use: str) -> str:
    if "label" in how_to_use:
        return "label"
    if "result" in how_to_use:
        return "resultSection"
    return "helpText"


def build_builder_context(analysis: CourseAnalysis, design: ToolDesign) -> BuilderContext:
    """Turn course analysis and tool design into the required-content contract.

    Framework items are only populated from an explicit numbered framework.
    """
    framework_items: list[FrameworkItem] = []
    if analysis.numbered_framework:
        for item in analysis.numbered_framework.items:
            if not item.name and not item.tool_input_label:
                continue
            name = item.name.lower()
            wanted = item.tool_input_label.lower()
            matching = next(
                (
                    i for i in design.inputs
                    if (name and name in i.label.lower())
                    or (wanted and wanted in i.label.lower())
                ),
                None,
            )
            framework_items.append(FrameworkItem(
                index=item.number,
                label=item.tool_input_label or item.full_label or item.name,
                definition=item.definition,
                input_kind=matching.type if matching else "number",
                placeholder=(
                    matching.placeholder if matching and matching.placeholder
                    else f"e.g., {item.number * 1000}"
                ),
            ))

    terminology = [
        TermRequirement(term=t.term, usage_hint=_usage_hint(t.how_to_use_in_tool))
        for t in analysis.key_terminology
        if t.term
    ]

    expert_quote: Optional[ExpertQuote] = None
    if analysis.expert_wisdom:
        first = analysis.expert_wisdom[0]
        expert_quote = ExpertQuote(quote=first.quote, source=first.source)

    criteria = analysis.decision_criteria
    calculation = Calculation(
        formula=design.formula or "Weighted analysis of inputs",
        go_criterion=(
            design.go_threshold
            or (criteria.go_condition if criteria else "")
            or "Positive indicators outweigh negative"
        ),
        no_go_criterion=(
            design.no_go_threshold
            or (criteria.no_go_condition if criteria else "")
            or "Negative indicators outweigh positive"
        ),
    )

    context = BuilderContext(
        tool=ToolIdentity(
            name=design.name,
            tagline=design.tagline,
            module_reference=analysis.module_title or "Course Module",
        ),
        framework_items=framework_items,
        terminology=terminology,
        expert_quote=expert_quote,
        checklist=analysis.checklist or None,
        calculation=calculation,
    )
    logger.info(
        f"[validation] BuilderContext for '{context.tool.name}': "
        f"{len(framework_items)} framework items, {len(terminology)} terms, "
        f"quote={expert_quote is not None}"
    )
    return context


def format_validation_result(result: ValidationResult) -> str:
    """Format a validation result for logs."""
    lines = [f"Validation [{result.stage}]: {'PASSED' if result.passed else 'FAILED'}"]
    if result.errors:
        lines.append("Errors:")
        lines.extend(f"  - [{e.code}] {e.message}" for e in result.errors)
    if result.warnings:
        lines.append("Warnings:")
        lines.extend(f"  - [{w.code}] {w.message}" for w in result.warnings)
    return "\n".join(lines)
