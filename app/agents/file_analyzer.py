"""
Per-file analysis (first review stage).

Each changed file is sent to the analysis model on its own so the final
review can draw on focused findings instead of one oversized diff.
"""

from typing import Optional

from app.agents.llm_client import LLMClient
from app.models.review import ChangedFile
from app.utils.metrics import ReviewMetrics

SYSTEM_PROMPT = (
    "You are a security-focused code analyst. Identify hardcoded values, security "
    "vulnerabilities, and code quality issues. Be specific and actionable. "
    "Use 🔴 emoji for critical issues."
)


class FileAnalyzer:
    """Produces a markdown analysis for a single changed file."""

    MAX_TOKENS = 2000
    TEMPERATURE = 0.3

    def __init__(self, llm_client: LLMClient, max_input_chars: int = 8000):
        self.llm_client = llm_client
        self.max_input_chars = max_input_chars

    async def analyze(
        self,
        model: str,
        pr_title: str,
        pr_body: Optional[str],
        file: ChangedFile,
        user_comment: Optional[str] = None,
        metrics: Optional[ReviewMetrics] = None,
    ) -> str:
        """
        Analyze one file change.

        Args:
            model: Analysis model name
            pr_title: Pull request title
            pr_body: Pull request description
            file: Changed file with its patch
            user_comment: Comment that triggered the review, if any

        Returns:
            The model's analysis text, unmodified
        """
        return await self.llm_client.complete(
            model=model,
            system_prompt=SYSTEM_PROMPT,
            user_prompt=self._build_user_prompt(pr_title, pr_body, file, user_comment),
            max_tokens=self.MAX_TOKENS,
            temperature=self.TEMPERATURE,
            metrics=metrics,
        )

    def _build_user_prompt(
        self,
        pr_title: str,
        pr_body: Optional[str],
        file: ChangedFile,
        user_comment: Optional[str],
    ) -> str:
        patch = (file.patch or "")[:self.max_input_chars]

        prompt = f"""You are an expert code analyst specializing in security and code quality. Analyze this specific file change from a pull request.

**PR Context:**
- Title: {pr_title}
- Description: {pr_body or 'No description provided'}

**File Being Analyzed:**
- Filename: {file.filename}
- Status: {file.status}
- Changes: +{file.additions} additions, -{file.deletions} deletions

**Code Changes:**
```diff
{patch}
```"""

        if user_comment:
            prompt += f"""

**User's Request/Question:**
"{user_comment}"

**IMPORTANT:** Address the user's specific request or question in your analysis."""

        prompt += f"""

**CRITICAL FOCUS AREAS:**
1. 🔴 **HARDCODED VALUES** - Credentials, API keys, secrets, passwords, URLs, IP addresses, or sensitive configuration
2. 🔴 **SECURITY VULNERABILITIES** - Injection, XSS, authentication and authorization flaws, insecure dependencies
3. 🔴 **CODE SMELLS** - Poor practices, anti-patterns, potential bugs

Provide your analysis in this structure:

## 📄 **File: {file.filename}**

### 🔴 **CRITICAL ISSUES** (if any)
- Hardcoded secrets, credentials, or severe security vulnerabilities
- Mark each with 🔴 emoji for visibility

### ⚠️ **Security Concerns** (if any)
- Security vulnerabilities or risks, with line references

### 💡 **Code Quality Issues** (if any)
- Code smells, anti-patterns, potential bugs, best practice violations

### ✅ **Positive Aspects** (if any)
- What's done well in this file

**Guidelines:**
- Be specific with line numbers and code examples
- Focus on ACTIONABLE findings
- Do NOT use placeholder text"""

        return prompt
