"""
Core pipeline package for pathway_pipeline.

This package contains the authoritative business logic for a query:
- code_index.py : classification code index (category <-> full code <-> programs/occupations)
- classifier.py : intent classification with deterministic fast paths
- resolver.py   : keywords + index resolution into a code context
- planner.py    : code context -> ordered retrieval-tool invocations
- executor.py   : concurrent tool execution with a join barrier
- verifier.py   : relevance scoring (completion or embedding collaborator) + adaptive threshold
- reflector.py  : quality assessment and bounded retry strategy
- aggregator.py : per-domain deduplication and merge
- query.py      : control loop, entrypoint, Lambda-style handler

Design invariants:
- No transport-specific logic lives here.
- Collaborator output is untrusted and always parsed through a schema with a fallback.
- Imports are absolute from the pathway_pipeline package root.
"""

__all__ = [
    "code_index",
    "classifier",
    "resolver",
    "planner",
    "executor",
    "verifier",
    "reflector",
    "aggregator",
    "query",
]
