"""
Discord AI Bot - a Discord chatbot backed by two hosted LLM providers.

Messages are answered by a fast primary provider (Groq chat completions)
while its daily quota lasts, with a Hugging Face text-generation fallback
for quota exhaustion and upstream failures. Each user gets a short-lived
conversation context, a per-minute message limit and an optional custom
system prompt.

Key Features:
- Provider failover with a shared daily quota for the primary provider
- Per-user rate limiting and expiring conversation memory
- Slash commands for chatting, status and administration
- Monitoring and admin HTTP API

Example:
    ```python
    from discord_ai_bot.main import main

    if __name__ == "__main__":
        main()
    ```
"""

__version__ = "0.1.0"

# Only import main function to avoid circular dependencies
def main():
    """Main entry point for the Discord AI Bot."""
    from discord_ai_bot.main import main as _main
    return _main()

__all__ = ["main", "__version__"]
