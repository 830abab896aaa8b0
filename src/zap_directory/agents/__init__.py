"""Long-running agents: zap ingestion and the directory cycle runner.

Provides BaseAgent ABC and AgentRegistry for coordinated
startup/shutdown.
"""
