"""Herald - GitHub webhook to Slack relay with LLM summaries."""
__version__ = "0.1.0"
