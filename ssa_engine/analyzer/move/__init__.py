"""Move-specific rule engine.

Provides the ArtifactView-driven heuristic ruleset and the Move
source parser used to build ArtifactViews from local sources.
"""
