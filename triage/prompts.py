"""
Prompts for AI validation of static-analysis findings.

The model is asked for a single JSON object:
    {"is_vulnerability": bool, "reason": str, "suggested_severity": str}
"""

from scan_engine.models import Issue

VALIDATION_SYSTEM_PROMPT = (
    "You are a security analysis expert. "
    "Always respond with valid JSON only, no additional text."
)

ISSUE_VALIDATION_PROMPT = """You are a C/C++ static analysis and security expert.
A tool ({analyzer}) found a *potential* security issue:

- Issue: {title}
- Description: {description}
- File: {file}:{line}
- Severity (Reported): {severity}
- Category: {category}

Below is the code context (the entire function) where the issue was found:
```c
{code_slice}
```

Analyze this context carefully. Is this a *real, exploitable vulnerability*, or is it likely a *false positive*?

Consider:
- Buffer sizes and bounds checks
- Null pointer checks
- Data flow and taint analysis
- Input validation
- Error handling
- Context-specific mitigations

Example 1 (Real Vulnerability):
{{
  "is_vulnerability": true,
  "reason": "Buffer overflow: strcpy without bounds check on user input from untrusted source",
  "suggested_severity": "Critical"
}}

Example 2 (False Positive):
{{
  "is_vulnerability": false,
  "reason": "Input is validated and size-limited (line 15) before strcpy call on line 18",
  "suggested_severity": "Info"
}}

Now analyze this case and respond ONLY in the following JSON format:
{{
  "is_vulnerability": true/false,
  "reason": "Your detailed technical explanation here...",
  "suggested_severity": "Critical/High/Medium/Low/Info"
}}
"""


def build_validation_prompt(issue: Issue, code_slice: str) -> str:
    return ISSUE_VALIDATION_PROMPT.format(
        analyzer=issue.analyzer,
        title=issue.title,
        description=issue.description,
        file=issue.location.file,
        line=issue.location.line,
        severity=issue.severity.display_name,
        category=issue.category.value,
        code_slice=code_slice.rstrip("\n"),
    )
