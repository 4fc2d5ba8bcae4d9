"""Prompt text sent to the models.

Templates with {fields} are filled by PromptComposer via str.format, so user
text containing braces is inserted verbatim.
"""

from __future__ import annotations

SYSTEM_PROMPT = (
    "You are a senior software test engineer who writes high-quality test "
    "cases. Follow the requested JSON output format exactly."
)

# Short prompt used when a model has to be probed directly for health.
HEALTH_PROBE = 'Reply with the JSON object {"ok": true}.'

# ── Test case generation ─────────────────────────────────────────────

ROLE_PREAMBLE = (
    "You are a professional software test engineer, skilled at designing "
    "detailed test cases from test points.\n"
)

EXAMPLES_HEADER = "\n## Reference examples (similar historical test cases)\n"

EXAMPLE_ENTRY = """\

### Example {index} (similarity {similarity_percent}%)
- Title: {title}
- Precondition: {precondition}
- Steps:
{steps}
- Expected result: {expected_result}
"""

EXAMPLES_FOOTER = (
    "\nFollow the style and structure of the examples above to write new "
    "test cases for the current test point.\n"
)

TEST_POINT_SECTION = """\

## Test point
- Name: {name}
- Description: {description}
- Priority: {priority}
- Related feature: {related_feature}
"""

BUSINESS_RULES_HEADER = "\n## Business rules\n"

FEATURES_HEADER = "\n## Related features\n"

REQUIREMENTS_SECTION = """\

## Requirements
1. Write 1-3 test cases for the test point, covering positive and negative paths.
2. Every test case must have a title, precondition, steps and expected result.
3. Steps must be concrete, executable actions.
4. Expected results must be explicit and verifiable.
5. Keep the priority of the test point.
"""

EXAMPLES_REQUIREMENT = (
    "6. Borrow the style of the reference examples, but target the specific "
    "scenario of the current test point.\n"
)

OUTPUT_FORMAT_SECTION = """\

## Output format
Return a single JSON object with this structure:
{
  "testCases": [
    {
      "title": "test case title",
      "precondition": "precondition",
      "steps": ["step 1", "step 2", "step 3"],
      "expectedResult": "expected result",
      "priority": "P0/P1/P2/P3"
    }
  ]
}

Make sure the output is valid JSON. Do not wrap it in markdown code fences."""
