CLUSTER_SUMMARY_PROMPT = """The passages below were clustered together by semantic similarity while building a multi-level summary index.

Write a single summary of the cluster. It will be searched in place of the passages, so:
- cover every topic the passages share, and mention any topic only one of them raises
- keep concrete details such as names, figures, dates and definitions
- make it readable on its own, without referring to "the passages"

Reply with the summary text only.

{chunks}
"""
