"""Identity resolution: employee codes to Subject and Evaluator records."""
