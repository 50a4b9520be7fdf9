"""
Final review synthesis (second review stage).
"""

from typing import List, Optional

from app.agents.llm_client import LLMClient
from app.models.review import ChangedFile
from app.utils.metrics import ReviewMetrics

SYSTEM_PROMPT = (
    "You are a professional code reviewer. Synthesize file analyses into a clear, "
    "actionable review. Highlight critical issues with 🔴 emoji. Tag users "
    "appropriately. Be constructive and specific."
)

ANALYSIS_SEPARATOR = "\n\n---\n\n"


class ReviewSynthesizer:
    """Turns the per-file analyses into one review comment body."""

    MAX_TOKENS = 3000
    TEMPERATURE = 0.4

    def __init__(self, llm_client: LLMClient):
        self.llm_client = llm_client

    async def synthesize(
        self,
        model: str,
        pr_title: str,
        pr_body: Optional[str],
        files: List[ChangedFile],
        file_analyses: List[str],
        pr_author: str,
        requested_by: Optional[str] = None,
        user_comment: Optional[str] = None,
        metrics: Optional[ReviewMetrics] = None,
    ) -> str:
        """Single call, not retried; failures propagate."""
        return await self.llm_client.complete(
            model=model,
            system_prompt=SYSTEM_PROMPT,
            user_prompt=self._build_user_prompt(
                pr_title, pr_body, files, file_analyses, pr_author, requested_by, user_comment
            ),
            max_tokens=self.MAX_TOKENS,
            temperature=self.TEMPERATURE,
            metrics=metrics,
        )

    def _build_user_prompt(
        self,
        pr_title: str,
        pr_body: Optional[str],
        files: List[ChangedFile],
        file_analyses: List[str],
        pr_author: str,
        requested_by: Optional[str],
        user_comment: Optional[str],
    ) -> str:
        files_list = "\n".join(
            f"- {f.filename} ({f.status}, +{f.additions}/-{f.deletions})" for f in files
        )
        other_requester = requested_by if requested_by and requested_by != pr_author else None

        prompt = f"""You are an expert code reviewer. Based on detailed file-by-file analyses, create a comprehensive final review.

**PR Context:**
- Title: {pr_title}
- Description: {pr_body or 'No description provided'}
- Author: @{pr_author}
- Files Changed ({len(files)} files):
{files_list}"""

        if other_requester:
            prompt += f"\n- Requested by: @{other_requester}"

        if user_comment:
            prompt += f"""

**User's Request/Question:**
"{user_comment}"

**IMPORTANT:** Address the user's specific request in your final review."""

        requested_note = f" (Review requested by @{other_requester})" if other_requester else ""

        prompt += f"""

**Individual File Analyses:**
{ANALYSIS_SEPARATOR.join(file_analyses)}

**YOUR TASK:**
Create a comprehensive, professional code review that:
1. Highlights ALL critical issues (hardcoded values, security vulnerabilities) from the individual analyses
2. Provides a clear overall assessment
3. Tags relevant users appropriately
4. Uses 🔴 emoji to highlight critical issues
5. Gives actionable recommendations

Write your review in this format:

## 🤖 Code Review

**@{pr_author}** - Thank you for your contribution!{requested_note}

### ✅ **Recommendation**
[APPROVE / REQUEST_CHANGES / COMMENT] - Clear verdict with reasoning

### 📋 **Summary**
**What this PR does:** Brief description of changes
**Impact:** Effect on the codebase
**Files analyzed:** {len(files)} files

### 🔴 **CRITICAL ISSUES** (if any)
- Use 🔴 emoji for each critical item
- Tag @{pr_author} for attention

### ⚠️ **Security & Best Practices**
- Security vulnerabilities, best practice violations, recommended fixes

### 💡 **Suggestions for Improvement**
- Code quality, performance and maintainability improvements

### ✅ **What's Good**
- Positive aspects of the PR

### 📝 **Action Items**
- [ ] Specific tasks for @{pr_author}

**Guidelines:**
- Be professional and constructive
- Use specific examples and line numbers
- Prioritize critical issues"""

        return prompt
