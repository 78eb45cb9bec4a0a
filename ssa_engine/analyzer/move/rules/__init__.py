"""Move heuristic rules, discovered by :class:`ssa_engine.analyzer.move.registry.RuleRegistry`."""
