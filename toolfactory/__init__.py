"""Tool Factory - stage orchestrator for interactive decision tools.

Turns a natural-language request (or structured course material) into a
single-file HTML tool by running a fixed sequence of LLM-backed stages:
- Specification extraction (or the course sub-pipeline)
- Audience, example and microcopy enrichment
- Template selection and artifact building
- Compliance auditing and QA grading with bounded revision
"""

__version__ = "0.1.0"
