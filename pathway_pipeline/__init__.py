"""
pathway_pipeline: query resolution and aggregation for educational/career pathway questions.

Subpackages:
- core : classification index, pipeline stages, collaborator clients, entrypoint
"""

__version__ = "0.1.0"
