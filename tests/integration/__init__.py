"""End-to-end tests that drive the orchestrator across module boundaries."""
