"""Subject/evaluator relationship graph."""
