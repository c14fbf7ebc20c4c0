"""Data access managers for the agent runtime.

Agent, version, preview and execution-record modules provide async functions
that take the request's ``AsyncSession``; the session manager is a lifespan
singleton over the session store.  Managers raise domain exceptions from
``coherex.agent_runtime.errors``, never HTTP exceptions -- that translation
is the app's exception handlers' responsibility.
"""
