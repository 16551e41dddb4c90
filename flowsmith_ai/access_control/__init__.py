"""Permission group enforcement for agent execution."""
