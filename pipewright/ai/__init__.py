"""AI agent support: providers, conversation loop, tools and chat."""
