"""AI module - Gemini structured output."""
