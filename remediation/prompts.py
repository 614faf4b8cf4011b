"""
Prompts for remediation code generation.

Two targets:
    rust - rewrite the offending C/C++ function as idiomatic, safe Rust
    c    - return the same C function with the defect fixed in place

On revision the previous attempt is shown together with its compiler
errors and static-analysis warnings as corrective feedback.
"""

from typing import List, Optional

from remediation.models import RemediationAttempt, RemediationRequest, TargetLanguage

RUST_SYSTEM_PROMPT = (
    "You are an expert Rust developer specialized in converting C/C++ code to idiomatic Rust. "
    "Follow these rules:\n"
    "1. Generate ONLY the Rust code - no explanations, no markdown formatting\n"
    "2. Preserve all functionality from the original C/C++ code\n"
    "3. Use idiomatic Rust patterns (Result, Option, iterators, slices)\n"
    "4. Add appropriate error handling with Result<T, E>; never unwrap on fallible input\n"
    "5. Use safe Rust; if unsafe is unavoidable, keep it minimal with a // SAFETY: comment\n"
    "6. Document public functions with /// comments\n"
    "7. Generate a complete, self-contained library file that compiles with rustc --crate-type lib"
)

C_FIX_SYSTEM_PROMPT = (
    "You are an expert C security engineer. "
    "Follow these rules:\n"
    "1. Generate ONLY the fixed C code - no explanations, no markdown formatting\n"
    "2. Keep the function signature and behavior unless the defect requires a change\n"
    "3. Replace unbounded APIs (strcpy, strcat, sprintf, gets) with bounded ones\n"
    "4. Check every allocation and return value that can fail\n"
    "5. Add a short comment at each fix site\n"
    "6. Include the headers the code needs so it passes -fsyntax-only -Wall -Wextra"
)

GENERATION_PROMPT = """{instruction}

Security issue to fix:
- Issue: {title}
- Severity: {severity}
- Category: {category}
- Location: {file}:{line}
- Description: {description}

Offending code (the marked line is where the issue was reported):
```c
{code_slice}
```

{closing}"""

REVISION_PROMPT = """Your previous attempt (#{attempt_number}) did not meet the quality bar.

Previous code:
```{fence}
{previous_code}
```

{feedback}

Fix every problem listed above and return the complete, corrected code.
Output ONLY the code (no explanations, no markdown)."""

_INSTRUCTIONS = {
    TargetLanguage.RUST: "Convert the following C/C++ function to safe, idiomatic Rust and fix the reported issue.",
    TargetLanguage.C: "Fix the reported security issue in the following C function in place.",
}

_CLOSINGS = {
    TargetLanguage.RUST: (
        "Generate a complete Rust file with all necessary use statements, proper error "
        "handling and doc comments.\nOutput ONLY the Rust code (no markdown, no explanations):"
    ),
    TargetLanguage.C: "Output ONLY the fixed C code (no markdown, no explanations):",
}


def system_prompt(target: TargetLanguage) -> str:
    return RUST_SYSTEM_PROMPT if target is TargetLanguage.RUST else C_FIX_SYSTEM_PROMPT


def _section(title: str, lines: List[str], limit: int = 30) -> str:
    shown = lines[:limit]
    body = "\n".join(shown)
    if len(lines) > limit:
        body += f"\n... ({len(lines) - limit} more)"
    return f"{title}:\n```\n{body}\n```"


def build_generation_prompt(request: RemediationRequest,
                            previous: Optional[RemediationAttempt] = None) -> str:
    issue = request.issue
    prompt = GENERATION_PROMPT.format(
        instruction=_INSTRUCTIONS[request.target],
        title=issue.title,
        severity=issue.severity.display_name,
        category=issue.category.value,
        file=issue.location.file,
        line=issue.location.line,
        description=issue.description or issue.title,
        code_slice=request.code_slice.rstrip("\n"),
        closing=_CLOSINGS[request.target],
    )
    if previous is None:
        return prompt

    report = previous.verification
    feedback = []
    if not report.compiles:
        feedback.append(_section("Compiler errors", report.compiler_errors or ["Compilation failed"]))
    else:
        feedback.append(
            f"It compiled but scored {report.quality_score:.1f}/100 with "
            f"{report.unsafe_ratio:.1f}% unsafe lines."
        )
        if report.compiler_warnings:
            feedback.append(_section("Compiler warnings", report.compiler_warnings))
    if report.static_warnings:
        feedback.append(_section("Static analysis warnings", report.static_warnings))

    revision = REVISION_PROMPT.format(
        attempt_number=previous.attempt_number,
        fence=request.target.fence,
        previous_code=previous.generated_code.rstrip("\n") or "// (no code was generated)",
        feedback="\n\n".join(feedback),
    )
    return f"{prompt}\n\n{revision}"
