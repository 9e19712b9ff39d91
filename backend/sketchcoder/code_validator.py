"""
Static JSX/TSX component validator. Pure Python, no AI.
Catches common React issues in generated components before they are saved
or previewed, plus a basic accessibility pass.
"""

import re

# Packages a generated component may import in the target app
VALID_PACKAGES = {
    "react", "react-dom",
    "lucide-react",
    "framer-motion",
    "@headlessui/react",
    "clsx", "tailwind-merge",
    "next/image", "next/link",
}

# Only these bindings exist inside the preview sandbox
PREVIEW_PACKAGES = {"react"}

_TRUNCATION_PATTERNS = [
    r"//\s*\.\.\.",
    r"//\s*rest of",
    r"//\s*more items",
    r"//\s*etc\.?$",
    r"//\s*add more",
    r"//\s*remaining",
    r"\{/\*\s*\.\.\.\s*\*/\}",
]


def validate_source(source_text: str, filename: str = "Component.tsx") -> dict:
    """
    Validate one generated component.

    Returns:
        {
            "valid": bool,
            "errors": [{"file", "line", "type", "message", "fix_hint"}],
            "warnings": [{"file", "line", "type", "message"}],
            "accessibility": [{"line", "type", "message", "suggestion", "impact"}],
            "stats": {"lines": int, "imports": list[str]}
        }
    """
    if not source_text or not source_text.strip():
        return {
            "valid": False,
            "errors": [{
                "file": filename,
                "line": 0,
                "type": "empty_source",
                "message": "No source text provided",
                "fix_hint": "Generate or paste a component first",
            }],
            "warnings": [],
            "accessibility": [],
            "stats": {"lines": 0, "imports": []},
        }

    lines = source_text.split("\n")
    errors = _check_jsx(filename, source_text, lines)
    warnings = _check_jsx_warnings(filename, source_text, lines)
    imports = _imported_packages(lines)

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "accessibility": check_accessibility(source_text),
        "stats": {"lines": len(lines), "imports": imports},
    }


def format_error_report(validation: dict) -> str:
    """Format validation results into a human-readable string."""
    parts = []
    if validation["errors"]:
        parts.append(f"ERRORS ({len(validation['errors'])}):")
        for e in validation["errors"]:
            line_str = f":{e['line']}" if e.get("line") else ""
            parts.append(f"  [{e['type']}] {e['file']}{line_str}: {e['message']}")
            if e.get("fix_hint"):
                parts.append(f"    Fix: {e['fix_hint']}")

    if validation["warnings"]:
        parts.append(f"\nWARNINGS ({len(validation['warnings'])}):")
        for w in validation["warnings"]:
            line_str = f":{w['line']}" if w.get("line") else ""
            parts.append(f"  [{w['type']}] {w['file']}{line_str}: {w['message']}")

    if validation.get("accessibility"):
        parts.append(f"\nACCESSIBILITY ({len(validation['accessibility'])}):")
        for a in validation["accessibility"]:
            line_str = f" line {a['line']}" if a.get("line") else ""
            parts.append(f"  [{a['impact']}] {a['message']}{line_str}")

    return "\n".join(parts) if parts else "All checks passed."


def _is_comment(line: str) -> bool:
    stripped = line.strip()
    return stripped.startswith("//") or stripped.startswith("*") or stripped.startswith("/*")


def _imported_packages(lines: list) -> list:
    packages = []
    for line in lines:
        m = re.match(r"\s*import\s+(?:.*\s+from\s+)?['\"]([^'\"]+)['\"]", line)
        if m:
            packages.append(m.group(1))
    return packages


def _base_package(pkg: str) -> str:
    if pkg.startswith("@"):
        parts = pkg.split("/")
        return "/".join(parts[:2]) if len(parts) >= 2 else pkg
    return pkg.split("/")[0]


def _check_jsx(filepath: str, content: str, lines: list) -> list:
    """Check a JSX/TSX component for errors."""
    errors = []

    # --- class= instead of className= ---
    for i, line in enumerate(lines, 1):
        if _is_comment(line):
            continue
        for m in re.finditer(r'(?<![\w-])class\s*=\s*["{]', line):
            errors.append({
                "file": filepath,
                "line": i,
                "type": "class_not_classname",
                "message": "Use className= instead of class= in JSX",
                "fix_hint": "Replace class= with className=",
            })

    # --- for= instead of htmlFor= ---
    for i, line in enumerate(lines, 1):
        if re.search(r'<label[^>]*\bfor\s*=', line):
            errors.append({
                "file": filepath,
                "line": i,
                "type": "for_not_htmlfor",
                "message": "Use htmlFor= instead of for= on labels",
                "fix_hint": "Replace for= with htmlFor=",
            })

    # --- style="..." instead of style={{}} ---
    for i, line in enumerate(lines, 1):
        if re.search(r'\bstyle\s*=\s*"[^"]*"', line) and not _is_comment(line):
            errors.append({
                "file": filepath,
                "line": i,
                "type": "style_string",
                "message": "style=\"...\" should be style={{...}} in JSX",
                "fix_hint": "Convert style string to style object: style={{ property: 'value' }}",
            })

    # --- HTML comments <!-- --> ---
    for i, line in enumerate(lines, 1):
        if "<!--" in line and not _is_comment(line):
            errors.append({
                "file": filepath,
                "line": i,
                "type": "html_comment",
                "message": "HTML comment <!-- --> found, use {/* */} in JSX",
                "fix_hint": "Replace <!-- comment --> with {/* comment */}",
            })

    # --- Truncation comments ---
    for i, line in enumerate(lines, 1):
        for pat in _TRUNCATION_PATTERNS:
            if re.search(pat, line, re.IGNORECASE):
                errors.append({
                    "file": filepath,
                    "line": i,
                    "type": "truncation_comment",
                    "message": f"Truncation placeholder found: {line.strip()[:80]}",
                    "fix_hint": "Replace with actual content, never abbreviate",
                })
                break

    # --- Duplicate consecutive blocks (4+ identical lines) ---
    if len(lines) > 8:
        for i in range(len(lines) - 3):
            block = lines[i:i + 4]
            if all(l.strip() for l in block) and lines[i + 4:i + 8] == block:
                errors.append({
                    "file": filepath,
                    "line": i + 5,
                    "type": "duplicate_block",
                    "message": "4+ consecutive identical lines repeated, likely copy-paste error",
                    "fix_hint": "Remove the duplicate block",
                })

    # --- Bad imports ---
    for i, line in enumerate(lines, 1):
        m = re.match(r"\s*import\s+.*\s+from\s+['\"]([^.'\"/][^'\"]*)['\"]", line)
        if not m:
            continue
        pkg = m.group(1)
        if pkg.startswith("@/"):
            continue
        if _base_package(pkg) not in VALID_PACKAGES and pkg not in VALID_PACKAGES:
            errors.append({
                "file": filepath,
                "line": i,
                "type": "bad_import",
                "message": f"Import from '{pkg}' is not an allowed package",
                "fix_hint": "Use an allowed alternative or remove this import",
            })

    return errors


def _check_jsx_warnings(filepath: str, content: str, lines: list) -> list:
    """Check for non-critical issues."""
    warnings = []

    # --- .map() without key ---
    for i, line in enumerate(lines, 1):
        if ".map(" in line or ".map (" in line:
            block = "\n".join(lines[i - 1:min(i + 10, len(lines))])
            if "key=" not in block and "key =" not in block:
                warnings.append({
                    "file": filepath,
                    "line": i,
                    "type": "missing_key_prop",
                    "message": ".map() call may be missing key prop on returned elements",
                })

    # --- Empty component ---
    if re.search(r"return\s*\(\s*null\s*\)|return\s+null\s*;?|return\s*\(\s*<>\s*</>\s*\)", content):
        warnings.append({
            "file": filepath,
            "line": 0,
            "type": "empty_component",
            "message": "Component returns null or an empty fragment",
        })

    # --- Imports the preview sandbox can't provide ---
    for i, line in enumerate(lines, 1):
        m = re.match(r"\s*import\s+.*\s+from\s+['\"]([^'\"]+)['\"]", line)
        if m and _base_package(m.group(1)) not in PREVIEW_PACKAGES:
            warnings.append({
                "file": filepath,
                "line": i,
                "type": "preview_unsupported_import",
                "message": f"'{m.group(1)}' is not available in the live preview; bindings from it will be undefined",
            })

    return warnings


# ---------------------------------------------------------------------------
# Accessibility
# ---------------------------------------------------------------------------

def _line_of(content: str, index: int) -> int:
    return content.count("\n", 0, index) + 1


def check_accessibility(content: str) -> list:
    """Heuristic accessibility issues, each tagged with an impact level."""
    issues = []

    for m in re.finditer(r"<img\b[^>]*>", content, re.IGNORECASE):
        if "alt=" not in m.group(0):
            issues.append({
                "line": _line_of(content, m.start()),
                "type": "img_missing_alt",
                "message": "Image missing alt attribute",
                "suggestion": 'Add alt="descriptive text" to the img tag',
                "impact": "critical",
            })

    for m in re.finditer(r"<button\b([^>]*)>\s*</button>", content, re.IGNORECASE):
        if "aria-label" not in m.group(1):
            issues.append({
                "line": _line_of(content, m.start()),
                "type": "button_without_text",
                "message": "Button without accessible text",
                "suggestion": "Add text content or aria-label to button",
                "impact": "critical",
            })

    for m in re.finditer(r"<input\b[^>]*>", content, re.IGNORECASE):
        tag = m.group(0)
        if 'type="hidden"' in tag or "aria-label" in tag:
            continue
        nearby = content[max(0, m.start() - 200):m.end() + 200]
        if "<label" not in nearby and "aria-labelledby" not in tag:
            issues.append({
                "line": _line_of(content, m.start()),
                "type": "input_without_label",
                "message": "Input may need a label",
                "suggestion": "Add a label element or aria-label attribute",
                "impact": "serious",
            })

    levels = [int(h) for h in re.findall(r"<h([1-6])\b", content)]
    if levels and 1 not in levels:
        issues.append({
            "line": 0,
            "type": "missing_h1",
            "message": "Missing h1 heading",
            "suggestion": "Start with an h1 heading for page structure",
            "impact": "moderate",
        })
    for prev, cur in zip(levels, levels[1:]):
        if cur > prev + 1:
            issues.append({
                "line": 0,
                "type": "skipped_heading_level",
                "message": f"Heading level jumps from h{prev} to h{cur}",
                "suggestion": "Keep heading levels sequential",
                "impact": "minor",
            })
            break

    for m in re.finditer(r"<(div|span)\b[^>]*\bonClick=", content):
        tag_end = content.find(">", m.start())
        tag = content[m.start():tag_end]
        if "onKeyDown" not in tag and "role=" not in tag:
            issues.append({
                "line": _line_of(content, m.start()),
                "type": "click_without_keyboard",
                "message": f"Clickable <{m.group(1)}> without keyboard support",
                "suggestion": "Use a <button>, or add role and onKeyDown handlers",
                "impact": "serious",
            })

    return issues
