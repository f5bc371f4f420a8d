from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from agent_chatops.domain.contracts import Classification

BRANCH_PREFIX = (
    "First, note which git branch is currently checked out and include it at the top "
    'of your response like "Branch: `xyz`". Then: '
)
NOT_ALLOWED_REASON = "Command not in allowlist. Type `help` to see available commands."

_BRANCH_ECHO = 'echo "Branch: $(git branch --show-current)" && echo "" && '
_PR_NUMBER_RE = re.compile(r"pr #?(\d+)", re.I)
_PR_SUMMARY_RE = re.compile(r"^pr #?\d+ summary", re.I)
_PR_APPROVE = "__PR_APPROVE__"
_PR_MERGE = "__PR_MERGE__"

CATEGORY_LABELS = {
    "ci": "🔧 CI Failure Remediation",
    "sre": "🚨 SRE / Production",
    "qa": "✅ QA & Testing",
    "review": "👀 PR Review",
    "work": "📊 Project Awareness",
    "info": "📋 Info & Read-only",
    "ops": "⚙️ Ops",
    "skill": "🚀 Skills (dangerous)",
}


@dataclass(frozen=True)
class CommandRoute:
    pattern: re.Pattern[str]
    usage: str
    description: str
    category: str
    shell: Optional[str] = None
    prompt: Optional[str] = None
    skill: Optional[str] = None
    dangerous: bool = False

    @property
    def is_parallel_safe(self) -> bool:
        return self.shell is not None

    def matches(self, text: str) -> bool:
        return bool(self.pattern.search(text))

    def to_command(self, text: str) -> Optional[str]:
        if self.shell is None:
            return None
        pr_number = extract_pr_number(text)
        if self.shell == _PR_APPROVE:
            return f"gh pr review {pr_number} --approve" if pr_number else None
        if self.shell == _PR_MERGE:
            return f"gh pr merge {pr_number} --squash --delete-branch" if pr_number else None
        return self.shell

    def to_prompt(self, text: str) -> str:
        content = text.strip()
        if self.prompt:
            return BRANCH_PREFIX + self.prompt
        if self.skill:
            return BRANCH_PREFIX + f"Use the /{self.skill} skill. Additional context: {content}"
        pr_number = extract_pr_number(content)
        if pr_number and _PR_SUMMARY_RE.search(content):
            return BRANCH_PREFIX + (
                f"Summarize PR #{pr_number}. Run `gh pr view {pr_number}` and "
                f"`gh pr diff {pr_number} --patch | head -200`. Provide: 1) What changed and why "
                "2) Risk areas 3) What to test. Be concise."
            )
        return BRANCH_PREFIX + content


def extract_pr_number(text: str) -> Optional[str]:
    match = _PR_NUMBER_RE.search(text or "")
    return match.group(1) if match else None


def _route(pattern: str, usage: str, description: str, category: str, **kwargs) -> CommandRoute:
    return CommandRoute(
        pattern=re.compile(pattern, re.I),
        usage=usage,
        description=description,
        category=category,
        **kwargs,
    )


DEFAULT_ROUTES: List[CommandRoute] = [
    _route(r"^(fix ci|ci fix|/ci-fix)\b", "fix ci", "Analyze latest CI failure, apply fixes, commit & push", "ci", skill="ci-fix"),
    _route(
        r"^ci (status|check)\b",
        "ci status",
        "Check current CI/CD run status",
        "ci",
        shell=_BRANCH_ECHO + "gh run list --limit 5",
    ),
    _route(
        r"^ci logs?\b",
        "ci logs",
        "Get latest CI failure logs",
        "ci",
        shell=(
            _BRANCH_ECHO
            + 'FAILED_RUN=$(gh run list --limit 1 --status failure --json databaseId --jq ".[0].databaseId" 2>/dev/null)'
            + ' && if [ -n "$FAILED_RUN" ] && [ "$FAILED_RUN" != "null" ]; then'
            + ' gh run view "$FAILED_RUN" --log-failed 2>&1 | tail -80; else echo "No recent failed runs found"; fi'
        ),
    ),
    _route(
        r"^(ruff fix|fix lint|lint fix)\b",
        "fix lint",
        "Auto-fix lint errors",
        "ci",
        prompt="Run the project's linter with auto-fix enabled. Report what was fixed. Do NOT commit.",
    ),
    _route(
        r"^(fix types?|type ?check|tsc fix)\b",
        "type check",
        "Check and report type errors",
        "ci",
        prompt="Run the project's type checker. Report any type errors found.",
    ),
    _route(
        r"^(fix tests?|test fix)\b",
        "fix tests",
        "Run failing tests and attempt fixes",
        "ci",
        prompt=(
            "Run the test suites to find failures. Report what failed. "
            "Do NOT auto-fix without showing what changed."
        ),
    ),
    _route(r"^/sre\b", "/sre", "Run SRE agent for production debugging", "sre", skill="sre"),
    _route(r"^/qa\b", "/qa", "Run QA checks (commit mode)", "qa", skill="qa"),
    _route(
        r"^run tests?\b",
        "run tests",
        "Run test suites locally",
        "qa",
        prompt="Run the test suites. Report pass/fail counts and any failures.",
    ),
    _route(
        r"^run lint\b",
        "run lint",
        "Run linters without fixing",
        "qa",
        prompt="Run the project's linters. Report errors found but do NOT auto-fix.",
    ),
    _route(r"^pr #?(\d+) summary\b", "pr <n> summary", "AI-summarize a PR: diff, risks, what to test", "review"),
    _route(r"^pr #?(\d+) approve\b", "pr <n> approve", "Approve a PR via GitHub CLI", "review", shell=_PR_APPROVE, dangerous=True),
    _route(
        r"^pr #?(\d+) merge\b",
        "pr <n> merge",
        "Squash-merge a PR and delete branch",
        "review",
        shell=_PR_MERGE,
        dangerous=True,
    ),
    _route(
        r"^whats? open\b",
        "whats open",
        "Open PRs + open issues in one view",
        "work",
        shell='echo "=== Open PRs ===" && gh pr list --limit 10 && echo "" && echo "=== Open Issues ===" && gh issue list --limit 10',
    ),
    _route(
        r"^whats? next\b",
        "whats next",
        "AI triage: open issues, PRs needing review, CI status, priorities",
        "work",
        prompt=(
            "Check: 1) Open PRs with `gh pr list` 2) Open issues with `gh issue list` "
            "3) CI status with `gh run list --limit 3` 4) Current branch status. "
            "Then suggest what to work on next, prioritized by urgency."
        ),
    ),
    _route(
        r"^diff main\b",
        "diff main",
        "Show diff stat vs main branch",
        "work",
        shell=_BRANCH_ECHO + "git diff --stat main...HEAD 2>/dev/null || git diff --stat main",
    ),
    _route(r"^recent commits\b", "recent commits", "Show last 10 commits", "work", shell="git log --oneline -10"),
    _route(
        r"^git status\b",
        "git status",
        "Show git status",
        "info",
        shell=_BRANCH_ECHO + 'git status --short && echo "" && echo "=== Recent Commits ===" && git log --oneline -5',
    ),
    _route(
        r"^(show|list|find|search|what|how|where|which|describe|explain)\b",
        "show / find / explain ...",
        "Read-only codebase queries",
        "info",
    ),
    _route(r"^(summarize|summary|report)\b", "summarize ...", "Generate summaries and reports", "info"),
    _route(r"^pr (status|list)\b", "pr list", "List open PRs", "info", shell=_BRANCH_ECHO + "gh pr list"),
    _route(r"^/restart\b", "/restart", "Restart local dev servers", "ops", skill="restart"),
    _route(r"^/pr\b", "/pr", "Create a PR (runs QA first)", "skill", skill="pr", dangerous=True),
]

DEFAULT_BLOCKED_PATTERNS: List[str] = [
    r"rm\s+-rf",
    r"drop\s+table",
    r"delete\s+from",
    r"force.?push",
    r"--force",
    r"railway\s+up\b",
    r"pip\s+uninstall",
    r"npm\s+uninstall",
    r"\bsudo\b",
    r"\bcurl\b.*\|.*\bsh\b",
    r"password|secret|token|api.?key",
    r"git\s+reset\s+--hard",
    r"git\s+push.*--force",
    r"git\s+clean\s+-f",
]


class CommandTable:
    """Allowlist/blocklist classifier for inbound chat commands."""

    def __init__(
        self,
        routes: Optional[Sequence[CommandRoute]] = None,
        blocked_patterns: Optional[Sequence[str]] = None,
    ) -> None:
        self._routes = list(routes if routes is not None else DEFAULT_ROUTES)
        self._blocked = [
            re.compile(p, re.I) for p in (blocked_patterns if blocked_patterns is not None else DEFAULT_BLOCKED_PATTERNS)
        ]

    @property
    def routes(self) -> List[CommandRoute]:
        return list(self._routes)

    def blocked_reason(self, text: str) -> Optional[str]:
        trimmed = (text or "").strip()
        for pattern in self._blocked:
            if pattern.search(trimmed):
                return f"Blocked: `{pattern.pattern}`"
        return None

    def classify(self, text: str) -> Classification:
        trimmed = (text or "").strip()
        reason = self.blocked_reason(trimmed)
        if reason:
            return Classification(accepted=False, rejection_reason=reason)
        for route in self._routes:
            if route.matches(trimmed):
                return Classification(accepted=True, handler=route)
        return Classification(accepted=False, rejection_reason=NOT_ALLOWED_REASON)

    def help_text(self) -> str:
        grouped: Dict[str, List[CommandRoute]] = {}
        for route in self._routes:
            grouped.setdefault(route.category, []).append(route)
        sections = []
        for category, routes in grouped.items():
            lines = [CATEGORY_LABELS.get(category, category)]
            for route in routes:
                icon = "⚠️" if route.dangerous else "•"
                lines.append(f"  {icon} `{route.usage}` — {route.description}")
            sections.append("\n".join(lines))
        return "\n".join(
            [
                "Agent ChatOps — Available Commands\n",
                "\n\n".join(sections),
                "",
                "🛑 Control Commands (while the agent is running)",
                "  • `abort` / `stop` / `cancel` — Kill the running agent process",
                "  • `focus <instruction>` — Abort + restart with new focus",
                "",
                "🚫 Blocked: rm -rf, DROP TABLE, force push, railway up, sudo, secrets, git reset --hard",
                "",
                "Shell commands run right away, even while the agent is busy.",
            ]
        )
