"""Business logic services.

Flow persistence, receipt verification, policy, rate limiting and the
orchestrator that ties them together. Route handlers and the content hook
call into these; none of them commit except the orchestrator.
"""
