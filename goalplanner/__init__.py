"""Goal planning backend: LLM-generated day-by-day plans and goal chat."""
