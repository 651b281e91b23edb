"""BrewNet authentication and session orchestration engine."""
