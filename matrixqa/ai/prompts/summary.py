"""System prompt for AI-generated run summaries."""

SUMMARY_SYSTEM_PROMPT = """You are an expert mobile QA engineer. Given the results of a visual regression and performance gate run across a device matrix, produce a concise, actionable natural-language summary. Focus on:

1. Overall health: how many runs passed, failed, or produced new baseline candidates
2. Visual regressions: which screens breached on which devices, and whether they cluster by OS, locale or form factor
3. Performance regressions: metrics that moved beyond their threshold
4. Infrastructure noise: flaky runs and exhausted retries
5. Recommendations: what to investigate or which baselines to review

Be concise but specific. Reference screen ids and device profiles where relevant. Write 3-8 sentences."""


def build_summary_prompt(run_results_json: str) -> str:
    """Build the user message for the summary AI call."""
    return (
        f"## Run Results\n\n```json\n{run_results_json}\n```\n\n"
        f"Generate a concise, actionable summary of these results."
    )
