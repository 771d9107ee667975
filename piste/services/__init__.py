"""
Engine services.

Composers (pool_composer, bracket_composer) are pure and never see a session.
formula_config and generation_orchestrator own the transactions; they take a
session and a resolved CallerIdentity and raise PisteError subclasses instead
of building HTTP responses.
"""
