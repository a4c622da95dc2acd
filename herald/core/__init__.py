"""Core relay modules: completion client, Slack client and the pipeline."""
