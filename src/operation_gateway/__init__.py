"""Operation Gateway: API descriptions in, resilient REST executions out."""
